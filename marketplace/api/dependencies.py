import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..errors import Unauthorized, Forbidden
from ..services.order_service import OrderService
from ..services.payment_service import PaymentService
from ..services.cart_service import CartService

ROLES = ("customer", "vendor", "admin")


@dataclass
class CurrentUser:
    id: int
    role: str


async def get_order_service(
    db: AsyncSession = Depends(get_db)
) -> OrderService:
    """Dependency для получения OrderService"""
    return OrderService(db)


async def get_payment_service(
    db: AsyncSession = Depends(get_db)
) -> PaymentService:
    """Dependency для получения PaymentService"""
    return PaymentService(db)


async def get_cart_service(
    db: AsyncSession = Depends(get_db)
) -> CartService:
    """Dependency для получения CartService"""
    return CartService(db)


def get_optional_user(
    x_user_id: Optional[int] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Optional[CurrentUser]:
    """
    Идентичность вызывающего, проставленная gateway после аутентификации.
    Выпуск и проверка токенов вне этого сервиса.
    """
    if x_user_id is None:
        return None
    role = (x_user_role or "customer").lower()
    if role not in ROLES:
        raise Forbidden("Unknown role", {"role": role})
    return CurrentUser(id=x_user_id, role=role)


def get_current_user(user: Optional[CurrentUser] = Depends(get_optional_user)) -> CurrentUser:
    if user is None:
        raise Unauthorized("Unauthorized")
    return user


def require_role(*roles: str):
    """Фабрика dependency: пропускает только указанные роли"""

    def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise Forbidden("Forbidden", {"required_roles": list(roles), "role": user.role})
        return user

    return checker


def get_cart_token(x_cart_token: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_cart_token or None


def verify_webhook_secret(
    x_payment_webhook_secret: Optional[str] = Header(default=None),
) -> None:
    """Проверка общего секрета вебхука до любой работы с БД"""
    expected = settings.payment_webhook_secret
    if not expected:
        return
    if not x_payment_webhook_secret or not hmac.compare_digest(
        x_payment_webhook_secret.encode("utf-8"), expected.encode("utf-8")
    ):
        raise Unauthorized("Unauthorized webhook", {"reason": "Invalid webhook secret"})
