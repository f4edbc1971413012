from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class PaymentCreate(BaseModel):
    """Тело POST /orders/{id}/pay"""
    provider: str = Field(..., min_length=1, max_length=50)
    provider_payment_id: Optional[str] = Field(default=None, max_length=255)
    amount: Optional[Decimal] = Field(default=None, ge=0)


class PaymentWebhook(BaseModel):
    """Тело POST /payments/webhook"""
    provider: str = Field(..., min_length=1, max_length=50)
    provider_payment_id: str = Field(..., min_length=1, max_length=255)
    status: str = Field(..., min_length=1, max_length=32)
    order_id: Optional[str] = None


class PaymentResponse(BaseModel):
    id: str
    order_id: str
    provider: str
    provider_payment_id: Optional[str] = None
    amount: Decimal
    status: str
    linked_payment_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentResult(BaseModel):
    """
    Результат прямой оплаты.
    Для master заказа заполнены master_*, для дочернего - payment_id/order_id.
    """
    status: str
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    master_payment_id: Optional[str] = None
    master_order_id: Optional[str] = None
    children_count: Optional[int] = None
    linked_payment_ids: Optional[List[str]] = None


class WebhookResult(BaseModel):
    reconciled: bool
    created: bool = False
    payment_id: Optional[str] = None
    status: Optional[str] = None
    message: str


class AllocationSummary(BaseModel):
    children_count: int
    master_amount: Decimal
    allocated_total: Decimal
    allocation_match: bool


class AllocationReport(BaseModel):
    master: PaymentResponse
    allocations: List[PaymentResponse]
    summary: AllocationSummary
