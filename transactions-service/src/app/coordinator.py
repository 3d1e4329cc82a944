import logging
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from app import crud, validators
from app.context import ServiceContext
from app.errors import InvalidStatusTransition, NotFound, Messages
from app.models import History, Transaction, TransactionDetail, TransactionStatus
from app.schemas import SettlementNotification, TransactionCreateRequest

logger = logging.getLogger("transactions.coordinator")

SETTLEMENT_STATUS = "settlement"

class TransactionCoordinator:
    """
    Владеет машиной состояний транзакции и каскадом PAID
    (списание остатков, история, доход, outbox).

    Каждая операция выполняется в одной транзакции БД: при ошибке
    откатывается весь каскад целиком.
    """

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx

    async def create_transaction(self, req: TransactionCreateRequest) -> Transaction:
        async with self.ctx.session_factory() as session:
            async with session.begin():
                lines = await validators.validate_new_transaction(req.details, session)
                transaction = await crud.create_transaction(
                    req.name, req.email, req.payment_method, lines, session
                )
                await crud.append_history(transaction.id, TransactionStatus.UNPAID, session)
                await crud.add_outbox_event(transaction, "transaction_created", session)
            await session.refresh(transaction)
        logger.info("[Transactions] Created transaction %s, total %s", transaction.id, transaction.total_amount)
        return transaction

    async def get_transaction(self, transaction_id: UUID) -> Transaction:
        async with self.ctx.session_factory() as session:
            transaction = await crud.get_transaction(transaction_id, session)
        if transaction is None:
            raise NotFound(Messages.TRANSACTION_NOT_FOUND)
        return transaction

    async def list_transactions(
        self,
        search: str = "",
        status: TransactionStatus | None = None,
        limit: int = 10,
        offset: int = 0
    ) -> Sequence[Transaction]:
        async with self.ctx.session_factory() as session:
            return await crud.list_transactions(session, search, status, limit, offset)

    async def get_details(self, transaction_id: UUID) -> Sequence[TransactionDetail]:
        async with self.ctx.session_factory() as session:
            if await crud.get_transaction(transaction_id, session) is None:
                raise NotFound(Messages.TRANSACTION_NOT_FOUND)
            return await crud.get_details_by_transaction(transaction_id, session)

    async def get_history(self, transaction_id: UUID) -> Sequence[History]:
        async with self.ctx.session_factory() as session:
            if await crud.get_transaction(transaction_id, session) is None:
                raise NotFound(Messages.TRANSACTION_NOT_FOUND)
            return await crud.get_history(transaction_id, session)

    async def transition_to_process_or_custom(self, transaction_id: UUID, target_status: str) -> Transaction:
        """
        Ручная смена статуса. PAID уходит в общий каскад mark_paid,
        остальные статусы проверяются по таблице переходов.
        """
        async with self.ctx.session_factory() as session:
            async with session.begin():
                transaction = await crud.get_transaction(transaction_id, session, for_update=True)
                if transaction is None:
                    raise NotFound(Messages.TRANSACTION_NOT_FOUND)
                status = validators.parse_custom_status(target_status)
                if status != TransactionStatus.PAID:
                    validators.ensure_transition(transaction, status)
                    await validators.claim_transition(transaction, status, session)
                    await crud.set_transaction_status(transaction, status, session)
                    await crud.append_history(transaction.id, status, session)
                    await crud.add_outbox_event(transaction, "transaction_status_changed", session)
            if status != TransactionStatus.PAID:
                await session.refresh(transaction)
        if status == TransactionStatus.PAID:
            return await self.mark_paid(transaction_id)
        logger.info("[Transactions] Transaction %s status updated to %s", transaction_id, status.value)
        return transaction

    async def confirm_payment(self, transaction_id: UUID, total_paid) -> tuple[Transaction, Decimal]:
        """
        Фиксирует оплату и доход. Статус и остатки не трогает:
        для этого есть mark_paid.
        """
        async with self.ctx.session_factory() as session:
            async with session.begin():
                transaction, amount = await validators.validate_payment(transaction_id, total_paid, session)
                change = await crud.set_transaction_payment(transaction, amount, session)
                await crud.record_income(transaction.id, Decimal(transaction.total_amount), session)
            await session.refresh(transaction)
        logger.info("[Transactions] Payment %s recorded for transaction %s", amount, transaction_id)
        return transaction, change

    async def mark_paid(
        self,
        transaction_id: UUID,
        settlement: SettlementNotification | None = None
    ) -> Transaction:
        async with self.ctx.session_factory() as session:
            async with session.begin():
                transaction = await validators.validate_status_transition(transaction_id, session)
                already_paid = transaction.status == TransactionStatus.PAID
                if not already_paid:
                    try:
                        await validators.claim_transition(transaction, TransactionStatus.PAID, session)
                    except InvalidStatusTransition:
                        # параллельный mark_paid успел первым
                        if transaction.status != TransactionStatus.PAID:
                            raise
                        already_paid = True
                if not already_paid:
                    await self._settle(transaction, settlement, session)
            await session.refresh(transaction)
        if already_paid:
            logger.info("[Transactions] Transaction %s already PAID, cascade skipped", transaction_id)
        else:
            logger.info("[Transactions] Transaction %s marked PAID", transaction_id)
        return transaction

    async def _settle(self, transaction: Transaction, settlement: SettlementNotification | None, session) -> None:
        details = await crud.get_details_by_transaction(transaction.id, session)
        # последовательно: несколько позиций одного товара не теряют обновления
        for detail in details:
            stock = await crud.decrement_product_stock(detail.product_id, detail.quantity, session)
            if stock is None:
                raise NotFound(Messages.PRODUCT_NOT_FOUND)
            if stock < 0:
                logger.warning("[Transactions] Product %s stock went negative: %s", detail.product_id, stock)

        extra = {}
        if settlement is not None:
            extra = {
                "settlement_time": settlement.settlement_time,
                "signature_key": settlement.signature_key,
                "total_paid": (
                    Decimal(str(settlement.gross_amount))
                    if settlement.gross_amount is not None else None
                ),
            }
        await crud.set_transaction_status(transaction, TransactionStatus.PAID, session, **extra)
        await crud.append_history(transaction.id, TransactionStatus.PAID, session)
        await crud.record_income(transaction.id, Decimal(transaction.total_amount), session)
        await crud.add_outbox_event(transaction, "transaction_paid", session)

    async def cancel(self, transaction_id: UUID) -> Transaction:
        async with self.ctx.session_factory() as session:
            async with session.begin():
                transaction = await crud.get_transaction(transaction_id, session, for_update=True)
                if transaction is None:
                    raise NotFound(Messages.TRANSACTION_NOT_FOUND)
                validators.ensure_transition(transaction, TransactionStatus.CANCEL)
                await validators.claim_transition(transaction, TransactionStatus.CANCEL, session)
                await crud.set_transaction_status(transaction, TransactionStatus.CANCEL, session)
                await crud.append_history(transaction.id, TransactionStatus.CANCEL, session)
                await crud.add_outbox_event(transaction, "transaction_cancelled", session)
            await session.refresh(transaction)
        logger.info("[Transactions] Transaction %s cancelled", transaction_id)
        return transaction

    async def handle_settlement(self, notification: SettlementNotification) -> Transaction | None:
        """
        Точка входа для уведомлений платёжного провайдера (webhook и очередь).
        Всё, кроме settlement, игнорируется.
        """
        if notification.transaction_status != SETTLEMENT_STATUS:
            logger.info(
                "[Transactions] Ignoring provider status %s for %s",
                notification.transaction_status, notification.order_id
            )
            return None

        try:
            transaction_id = UUID(notification.order_id)
        except ValueError:
            transaction_id = None
        exists = False
        if transaction_id is not None:
            async with self.ctx.session_factory() as session:
                exists = await crud.get_transaction(transaction_id, session) is not None
        if not exists:
            logger.warning("[Transactions] Settlement for unknown transaction %s", notification.order_id)
            return None

        try:
            return await self.mark_paid(transaction_id, notification)
        except InvalidStatusTransition as e:
            logger.error("[Transactions] Settlement for %s rejected: %s", notification.order_id, e.message)
            return None
