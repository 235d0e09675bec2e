from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_never,
    wait_fixed,
)

from .exceptions import PermanentError

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-interval retry with no attempt limit.

    ``sleep`` is injectable so tests can drive the policy with a fake clock.
    ``PermanentError`` (and ``BaseException`` such as cancellation) is never
    retried.
    """

    interval: float = 5.0
    sleep: SleepFn = asyncio.sleep

    def retrying(
        self,
        logger: Optional[logging.Logger] = None,
        *,
        log_level: int = logging.WARNING,
    ) -> AsyncRetrying:
        log = logger or logging.getLogger(__name__)
        return AsyncRetrying(
            sleep=self.sleep,
            stop=stop_never,
            wait=wait_fixed(self.interval),
            retry=(
                retry_if_exception_type(Exception)
                & retry_if_not_exception_type(PermanentError)
            ),
            before_sleep=before_sleep_log(log, log_level),
            reraise=True,
        )


__all__ = ["RetryPolicy", "SleepFn"]
