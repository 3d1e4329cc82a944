from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from app.models import PaymentMethod, TransactionStatus

class TransactionDetailCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., description="Количество товара в позиции")

class TransactionCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Имя покупателя")
    email: Optional[str] = Field(None, description="Email покупателя")
    payment_method: PaymentMethod
    details: List[TransactionDetailCreate] = Field(default_factory=list)

class StatusUpdateRequest(BaseModel):
    status: str = Field(..., description="PAID, UNPAID или PROCESS_BY_KITCHEN (регистр не важен)")

class PaymentRequest(BaseModel):
    total_paid: float = Field(..., description="Сумма, полученная от покупателя")

class TransactionDetailRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_id: UUID
    product_id: UUID
    quantity: int
    amount: float
    created_at: Optional[datetime]

class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: Optional[str]
    payment_method: PaymentMethod
    status: TransactionStatus
    total_amount: float
    total_quantity: int
    total_paid: Optional[float]
    settlement_time: Optional[str]
    signature_key: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    details: List[TransactionDetailRead] = []

class PaymentRead(BaseModel):
    transaction: TransactionRead
    change: float

class HistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_id: UUID
    status: TransactionStatus
    created_at: Optional[datetime]

class SettlementNotification(BaseModel):
    """Payment-provider notification, delivered by webhook or queue."""
    model_config = ConfigDict(extra="ignore")

    order_id: str
    transaction_status: str
    settlement_time: Optional[str] = None
    signature_key: Optional[str] = None
    gross_amount: Optional[float] = None

class TransactionEvent(BaseModel):
    transaction_id: UUID
    status: TransactionStatus
    total_amount: float
    total_paid: Optional[float] = None
