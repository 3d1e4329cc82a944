from decimal import Decimal, InvalidOperation
from typing import List
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.errors import InvalidInput, InvalidStatusTransition, NotFound, Messages
from app.models import Product, Transaction, TransactionStatus
from app.schemas import TransactionDetailCreate

CUSTOM_STATUSES = {
    TransactionStatus.PAID,
    TransactionStatus.UNPAID,
    TransactionStatus.PROCESS_BY_KITCHEN,
}

TERMINAL_STATUSES = {TransactionStatus.PAID, TransactionStatus.CANCEL}

# допустимые переходы статусов (только вперёд)
ALLOWED_TRANSITIONS = {
    TransactionStatus.UNPAID: {
        TransactionStatus.PROCESS_BY_KITCHEN,
        TransactionStatus.PAID,
        TransactionStatus.CANCEL,
    },
    TransactionStatus.PROCESS_BY_KITCHEN: {
        TransactionStatus.PAID,
        TransactionStatus.CANCEL,
    },
    TransactionStatus.PAID: set(),
    TransactionStatus.CANCEL: set(),
}

def parse_custom_status(raw: str) -> TransactionStatus:
    """Case-insensitive parse of a manually supplied status."""
    try:
        status = TransactionStatus((raw or "").strip().upper())
    except ValueError:
        raise InvalidInput(Messages.INVALID_STATUS)
    if status not in CUSTOM_STATUSES:
        raise InvalidInput(Messages.INVALID_STATUS)
    return status

def ensure_transition(transaction: Transaction, target: TransactionStatus) -> None:
    current = transaction.status
    if current in TERMINAL_STATUSES:
        raise InvalidStatusTransition(Messages.ALREADY_FINAL.format(status=current.value))
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(
            Messages.ILLEGAL_TRANSITION.format(current=current.value, target=target.value)
        )

def sources_for(target: TransactionStatus) -> List[TransactionStatus]:
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]

async def claim_transition(
    transaction: Transaction,
    target: TransactionStatus,
    session: AsyncSession
) -> None:
    """
    Занимает переход условным UPDATE. Если статус уже сменил параллельный
    запрос, перечитывает транзакцию и отклоняет переход.
    """
    if await crud.claim_status(transaction.id, sources_for(target), target, session):
        return
    await session.refresh(transaction)
    ensure_transition(transaction, target)
    raise InvalidStatusTransition(
        Messages.ILLEGAL_TRANSITION.format(current=transaction.status.value, target=target.value)
    )

async def validate_status_transition(
    transaction_id: UUID,
    session: AsyncSession
) -> Transaction:
    """
    Проверка перед переводом в PAID. Возвращает заблокированную транзакцию.
    PAID пропускается (повторная оплата ничего не делает), CANCEL отклоняется.
    """
    transaction = await crud.get_transaction(transaction_id, session, for_update=True)
    if transaction is None:
        raise NotFound(Messages.TRANSACTION_NOT_FOUND)
    if transaction.status == TransactionStatus.CANCEL:
        raise InvalidStatusTransition(Messages.ALREADY_FINAL.format(status=transaction.status.value))
    return transaction

async def validate_payment(
    transaction_id: UUID,
    total_paid,
    session: AsyncSession
) -> tuple[Transaction, Decimal]:
    transaction = await crud.get_transaction(transaction_id, session, for_update=True)
    if transaction is None:
        raise NotFound(Messages.TRANSACTION_NOT_FOUND)
    if transaction.status == TransactionStatus.CANCEL:
        raise InvalidStatusTransition(Messages.ALREADY_FINAL.format(status=transaction.status.value))
    try:
        amount = Decimal(str(total_paid))
    except (InvalidOperation, TypeError):
        raise InvalidInput(Messages.INVALID_AMOUNT)
    if not amount.is_finite() or amount <= 0:
        raise InvalidInput(Messages.INVALID_AMOUNT)
    if amount < Decimal(transaction.total_amount):
        raise InvalidInput(Messages.INSUFFICIENT_PAYMENT)
    return transaction, amount

async def validate_new_transaction(
    details: List[TransactionDetailCreate],
    session: AsyncSession
) -> List[tuple[Product, int]]:
    if not details:
        raise InvalidInput(Messages.EMPTY_DETAILS)
    for detail in details:
        if detail.quantity <= 0:
            raise InvalidInput(Messages.INVALID_QUANTITY)
    products = await crud.get_products(list({d.product_id for d in details}), session)
    lines = []
    for detail in details:
        product = products.get(detail.product_id)
        if product is None:
            raise NotFound(Messages.PRODUCT_NOT_FOUND)
        lines.append((product, detail.quantity))
    return lines
