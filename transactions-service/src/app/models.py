import enum
import uuid
from sqlalchemy import (
    Column, String, Integer, Numeric, TIMESTAMP, JSON, Uuid, Enum, ForeignKey, func
)
from sqlalchemy.orm import relationship
from app.db import Base

class TransactionStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PROCESS_BY_KITCHEN = "PROCESS_BY_KITCHEN"
    PAID = "PAID"
    CANCEL = "CANCEL"

class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    QRIS = "QRIS"

class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(120), nullable=False)
    price = Column(Numeric(18, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), onupdate=func.now())

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=True)
    payment_method = Column(Enum(PaymentMethod, native_enum=False), nullable=False)
    status = Column(
        Enum(TransactionStatus, native_enum=False),
        nullable=False,
        default=TransactionStatus.UNPAID
    )
    total_amount = Column(Numeric(18, 2), nullable=False, default=0)
    total_quantity = Column(Integer, nullable=False, default=0)
    total_paid = Column(Numeric(18, 2), nullable=True)
    settlement_time = Column(String(40), nullable=True)
    signature_key = Column(String(255), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), onupdate=func.now())

    details = relationship(
        "TransactionDetail",
        back_populates="transaction",
        order_by="TransactionDetail.created_at",
        lazy="selectin",
    )

class TransactionDetail(Base):
    __tablename__ = "transaction_details"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(Uuid(as_uuid=True), ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    transaction = relationship("Transaction", back_populates="details")

class History(Base):
    __tablename__ = "transaction_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(Uuid(as_uuid=True), ForeignKey("transactions.id"), nullable=False, index=True)
    status = Column(Enum(TransactionStatus, native_enum=False), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

class Income(Base):
    __tablename__ = "incomes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # one income per transaction
    transaction_id = Column(Uuid(as_uuid=True), ForeignKey("transactions.id"), nullable=False, unique=True)
    nominal = Column(Numeric(18, 2), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

class TransactionsOutbox(Base):
    __tablename__ = "transactions_outbox"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    aggregate_id = Column(Uuid(as_uuid=True), nullable=False)
    event_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    published_at = Column(TIMESTAMP(timezone=True), nullable=True)
