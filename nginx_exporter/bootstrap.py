import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def create_client_with_retries(
    get_client: Callable[[], T],
    retries: int,
    retry_interval: float,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call get_client until it succeeds, at most retries + 1 times.

    The error from the last attempt is re-raised.
    """
    attempt = 0
    while True:
        try:
            return get_client()
        except Exception as e:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning(
                "could not create NGINX client (%s), retrying in %.1fs (%d/%d)",
                e, retry_interval, attempt, retries,
            )
            sleep(retry_interval)
