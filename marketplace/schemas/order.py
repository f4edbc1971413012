from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from ..models.order import OrderStatus


class OrderLineCreate(BaseModel):
    product_id: int
    quantity: int


class OrderCreate(BaseModel):
    items: List[OrderLineCreate] = Field(..., min_length=1)
    shipping_address: Optional[str] = None


class OrderItemResponse(BaseModel):
    id: int
    order_id: str
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: str
    buyer_id: int
    parent_order_id: Optional[str] = None
    vendor_id: Optional[int] = None
    status: OrderStatus
    total_amount: Decimal
    shipping_address: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChildOrderSummary(BaseModel):
    order_id: str
    vendor_id: int
    total: Decimal


class CheckoutResponse(BaseModel):
    master_order: OrderResponse
    child_orders: List[ChildOrderSummary]


class ChildOrderDetail(OrderResponse):
    items: List[OrderItemResponse] = []


class OrderDetailResponse(BaseModel):
    """Master заказ с дочерними, либо дочерний заказ с родителем"""
    order: OrderResponse
    items: List[OrderItemResponse] = []
    children: List[ChildOrderDetail] = []
    parent: Optional[OrderResponse] = None


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    per_page: int
    total_pages: int
