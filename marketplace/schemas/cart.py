from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class CartItemCreate(BaseModel):
    product_id: int = Field(..., ge=1)
    quantity: int = Field(default=1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int


class CartMerge(BaseModel):
    cart_token: str = Field(..., min_length=1)


class CartCheckout(BaseModel):
    shipping_address: Optional[str] = None


class CartItem(BaseModel):
    id: int
    cart_id: str
    product_id: int
    vendor_id: Optional[int] = None
    product_name: Optional[str] = None
    quantity: int
    price_at_add: Decimal

    class Config:
        from_attributes = True


class CartSummary(BaseModel):
    cart_id: Optional[str] = None  # None - корзина еще не создана
    user_id: Optional[int] = None
    cart_token: Optional[str] = None
    item_count: int
    total_amount: Decimal
    items: List[CartItem]
    updated_at: Optional[datetime] = None
