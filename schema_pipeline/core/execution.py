"""Timeout-bearing execution of external collaborator calls."""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, TypeVar

from schema_pipeline.core.exceptions import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_timeout(awaitable: Awaitable[T], timeout: timedelta, operation: str) -> T:
    """
    Await an external call, cancelling it once the timeout expires.
    
    Args:
        awaitable: Coroutine or future for the external call
        timeout: Maximum time to wait
        operation: Human readable name used in the timeout error
        
    Returns:
        Whatever the awaitable returns
        
    Raises:
        OperationTimeoutError: If the call did not finish in time
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout.total_seconds())
    except asyncio.TimeoutError as e:
        logger.error(f"{operation} timed out after {timeout.total_seconds():g}s")
        raise OperationTimeoutError(operation, timeout) from e
