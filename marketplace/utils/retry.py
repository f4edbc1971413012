# marketplace/utils/retry.py
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..config import settings
from ..errors import TransientStoreError


def store_retry():
    """
    Повтор транзакции только при транзиентной ошибке хранилища.
    Бизнес-отказы (нет остатка, уже оплачен) не повторяются.
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(settings.store_retry_attempts),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(TransientStoreError),
    )
