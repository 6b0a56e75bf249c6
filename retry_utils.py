"""
retry_utils.py - tenacity helpers for sysup.

Upgrades and operator-approved mitigations are retried on a *result*
(a failed exit status), not on an exception, and the last result is
returned once attempts run out.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)


def _last_result(retry_state: RetryCallState) -> Any:
    assert retry_state.outcome is not None
    return retry_state.outcome.result()


def result_retrying(
    attempts: int,
    delay: float,
    failed: Callable[[Any], bool],
    sleep: Callable[[float], None] = time.sleep,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> Retrying:
    """Build a Retrying that re-runs while ``failed(result)`` is true.

    Fixed delay, no backoff growth. When attempts are exhausted the last
    result is returned instead of raising RetryError.
    """
    return Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        retry=retry_if_result(failed),
        sleep=sleep,
        before_sleep=before_sleep,
        retry_error_callback=_last_result,
    )
