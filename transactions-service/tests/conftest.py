from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import select, func

from app.config import Settings
from app.context import build_context
from app.coordinator import TransactionCoordinator
from app.db import create_schema
from app.models import (
    History, Income, PaymentMethod, Product, Transaction,
    TransactionStatus, TransactionsOutbox,
)
from app.schemas import TransactionCreateRequest, TransactionDetailCreate


@pytest.fixture
async def ctx(tmp_path):
    settings = Settings(
        TRANSACTIONS_DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'transactions.db'}",
        MESSAGING_ENABLED=False,
    )
    ctx = build_context(settings)
    await create_schema(ctx.engine)
    yield ctx
    await ctx.dispose()


@pytest.fixture
def coordinator(ctx):
    return TransactionCoordinator(ctx)


async def add_product(ctx, name: str, price: str, stock: int) -> UUID:
    async with ctx.session_factory() as session:
        product = Product(name=name, price=Decimal(price), stock=stock)
        session.add(product)
        await session.commit()
        return product.id


@pytest.fixture
async def products(ctx):
    """Product A: stock 10, product B: stock 5."""
    product_a = await add_product(ctx, "Nasi Goreng", "15000", 10)
    product_b = await add_product(ctx, "Es Teh", "5000", 5)
    return product_a, product_b


def make_request(*lines, name="Budi", payment_method=PaymentMethod.CASH) -> TransactionCreateRequest:
    return TransactionCreateRequest(
        name=name,
        email=f"{name.lower()}@example.com",
        payment_method=payment_method,
        details=[TransactionDetailCreate(product_id=pid, quantity=qty) for pid, qty in lines],
    )


@pytest.fixture
async def t1(coordinator, products):
    """T1: two of A, one of B, total 35000."""
    product_a, product_b = products
    transaction = await coordinator.create_transaction(
        make_request((product_a, 2), (product_b, 1))
    )
    return transaction.id


async def insert_bare_transaction(ctx, total_amount: str = "0") -> UUID:
    async with ctx.session_factory() as session:
        transaction = Transaction(
            name="Walk-in",
            payment_method=PaymentMethod.CASH,
            status=TransactionStatus.UNPAID,
            total_amount=Decimal(total_amount),
            total_quantity=0,
        )
        session.add(transaction)
        await session.commit()
        return transaction.id


async def stock_of(ctx, product_id: UUID) -> int:
    async with ctx.session_factory() as session:
        product = await session.get(Product, product_id)
        return product.stock


async def status_of(ctx, transaction_id: UUID) -> TransactionStatus:
    async with ctx.session_factory() as session:
        transaction = await session.get(Transaction, transaction_id)
        return transaction.status


async def count_rows(ctx, model, **filters) -> int:
    async with ctx.session_factory() as session:
        stmt = select(func.count()).select_from(model)
        for column, value in filters.items():
            stmt = stmt.where(getattr(model, column) == value)
        return (await session.execute(stmt)).scalar_one()


async def history_statuses(ctx, transaction_id: UUID) -> list:
    async with ctx.session_factory() as session:
        result = await session.execute(
            select(History.status)
            .where(History.transaction_id == transaction_id)
            .order_by(History.created_at)
        )
        return list(result.scalars().all())


async def incomes_for(ctx, transaction_id: UUID) -> list:
    async with ctx.session_factory() as session:
        result = await session.execute(
            select(Income.nominal).where(Income.transaction_id == transaction_id)
        )
        return list(result.scalars().all())


async def outbox_event_types(ctx, transaction_id: UUID) -> list:
    async with ctx.session_factory() as session:
        result = await session.execute(
            select(TransactionsOutbox.event_type)
            .where(TransactionsOutbox.aggregate_id == transaction_id)
        )
        return list(result.scalars().all())


