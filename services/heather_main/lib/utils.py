# services/heather_main/lib/utils.py
"""
Retry and payload helpers shared by the external API clients
"""
import asyncio
import base64
import binascii
import logging
import random
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def exponential_backoff_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 4,
    base_delay: float = 1.0,
    max_delay: float = 16.0,
    jitter: bool = True,
    backoff_factor: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Exponential backoff retry with jitter

    Args:
        func: Async function to retry
        max_retries: Maximum number of attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        jitter: Add random jitter to prevent thundering herd
        backoff_factor: Multiplier for each retry
        retry_on: Exception types worth retrying; anything else fails at once
    """
    last_exception = None

    for attempt in range(max_retries):
        try:
            return await func()
        except retry_on as e:
            last_exception = e

            if attempt == max_retries - 1:
                raise

            delay = min(base_delay * (backoff_factor ** attempt), max_delay)
            if jitter:
                delay += delay * 0.1 * random.random()

            logger.warning(
                f"Retry attempt {attempt + 1}/{max_retries} after {delay:.2f}s delay. "
                f"Error: {str(e)[:100]}"
            )
            await asyncio.sleep(delay)

    raise last_exception


def decode_base64_payload(data: str) -> bytes:
    """
    Decode a base64 upload, tolerating a `data:<mime>;base64,` prefix.
    Raises ValueError on empty or malformed input.
    """
    if not data or not data.strip():
        raise ValueError("Empty document payload")

    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]

    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Document payload is not valid base64: {e}") from e
