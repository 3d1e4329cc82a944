from decimal import Decimal
from typing import List, Sequence
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, or_, func
from fastapi.encoders import jsonable_encoder

from app.models import (
    Transaction, TransactionDetail, Product, History, Income, TransactionsOutbox,
    TransactionStatus,
)
from app.schemas import TransactionEvent

async def get_transaction(
    transaction_id: UUID,
    session: AsyncSession,
    for_update: bool = False
) -> Transaction | None:
    """
    Возвращает транзакцию по ID или None. for_update блокирует строку до конца транзакции БД.
    """
    stmt = select(Transaction).where(Transaction.id == transaction_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()

async def list_transactions(
    session: AsyncSession,
    search: str = "",
    status: TransactionStatus | None = None,
    limit: int = 10,
    offset: int = 0
) -> Sequence[Transaction]:
    stmt = select(Transaction)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Transaction.name.ilike(pattern), Transaction.email.ilike(pattern)))
    if status is not None:
        stmt = stmt.where(Transaction.status == status)
    stmt = stmt.order_by(Transaction.created_at.desc()).limit(limit).offset(offset)
    result = await session.execute(stmt)
    return result.scalars().all()

async def get_details_by_transaction(
    transaction_id: UUID,
    session: AsyncSession
) -> Sequence[TransactionDetail]:
    result = await session.execute(
        select(TransactionDetail)
        .where(TransactionDetail.transaction_id == transaction_id)
        .order_by(TransactionDetail.created_at)
    )
    return result.scalars().all()

async def get_products(product_ids: List[UUID], session: AsyncSession) -> dict[UUID, Product]:
    result = await session.execute(select(Product).where(Product.id.in_(product_ids)))
    return {product.id: product for product in result.scalars().all()}

async def decrement_product_stock(
    product_id: UUID,
    quantity: int,
    session: AsyncSession
) -> int | None:
    """
    Атомарно уменьшает остаток на стороне БД (stock = stock - quantity).
    Возвращает новый остаток или None, если товара нет. Отрицательный остаток допускается.
    """
    result = await session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock - quantity, updated_at=func.now())
        .returning(Product.stock)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()

async def create_transaction(
    name: str,
    email: str | None,
    payment_method,
    lines: List[tuple[Product, int]],
    session: AsyncSession
) -> Transaction:
    """
    Создаёт транзакцию и её позиции. Суммы считаются по текущей цене товара.
    """
    details = [
        TransactionDetail(
            product_id=product.id,
            quantity=quantity,
            amount=Decimal(product.price) * quantity
        )
        for product, quantity in lines
    ]
    transaction = Transaction(
        name=name,
        email=email,
        payment_method=payment_method,
        status=TransactionStatus.UNPAID,
        total_amount=sum((d.amount for d in details), Decimal("0")),
        total_quantity=sum(d.quantity for d in details),
        details=details
    )
    session.add(transaction)
    await session.flush()  # чтобы получить transaction.id
    return transaction

async def claim_status(
    transaction_id: UUID,
    from_statuses: List[TransactionStatus],
    status: TransactionStatus,
    session: AsyncSession
) -> bool:
    """
    UPDATE ... WHERE status IN (from_statuses). Из конкурирующих запросов
    строку получает только один, независимо от поддержки FOR UPDATE.
    """
    result = await session.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id, Transaction.status.in_(from_statuses))
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

async def set_transaction_status(
    transaction: Transaction,
    status: TransactionStatus,
    session: AsyncSession,
    settlement_time: str | None = None,
    signature_key: str | None = None,
    total_paid: Decimal | None = None
) -> Transaction:
    transaction.status = status
    if settlement_time is not None:
        transaction.settlement_time = settlement_time
    if signature_key is not None:
        transaction.signature_key = signature_key
    if total_paid is not None:
        transaction.total_paid = total_paid
    session.add(transaction)
    await session.flush()
    return transaction

async def set_transaction_payment(
    transaction: Transaction,
    total_paid: Decimal,
    session: AsyncSession
) -> Decimal:
    """
    Сохраняет оплаченную сумму. Возвращает сдачу относительно total_amount.
    """
    transaction.total_paid = total_paid
    session.add(transaction)
    await session.flush()
    return total_paid - Decimal(transaction.total_amount)

async def append_history(
    transaction_id: UUID,
    status: TransactionStatus,
    session: AsyncSession
) -> History:
    history = History(transaction_id=transaction_id, status=status)
    session.add(history)
    await session.flush()
    return history

async def get_history(transaction_id: UUID, session: AsyncSession) -> Sequence[History]:
    result = await session.execute(
        select(History)
        .where(History.transaction_id == transaction_id)
        .order_by(History.created_at)
    )
    return result.scalars().all()

async def record_income(
    transaction_id: UUID,
    amount: Decimal,
    session: AsyncSession
) -> Income | None:
    """
    Создаёт запись о доходе, если её ещё нет. Повторный вызов возвращает None.
    """
    existing = await session.execute(
        select(Income).where(Income.transaction_id == transaction_id)
    )
    if existing.scalar_one_or_none() is not None:
        return None
    income = Income(transaction_id=transaction_id, nominal=amount)
    session.add(income)
    await session.flush()
    return income

async def add_outbox_event(
    transaction: Transaction,
    event_type: str,
    session: AsyncSession
) -> TransactionsOutbox:
    payload = jsonable_encoder(TransactionEvent(
        transaction_id=transaction.id,
        status=transaction.status,
        total_amount=float(transaction.total_amount),
        total_paid=float(transaction.total_paid) if transaction.total_paid is not None else None
    ))
    outbox_rec = TransactionsOutbox(
        aggregate_id=transaction.id,
        event_type=event_type,
        payload=payload
    )
    session.add(outbox_rec)
    return outbox_rec

async def get_pending_outbox(session: AsyncSession) -> Sequence[TransactionsOutbox]:
    result = await session.execute(
        select(TransactionsOutbox)
        .where(TransactionsOutbox.published_at.is_(None))
        .order_by(TransactionsOutbox.created_at)
    )
    return result.scalars().all()
