"""
Bounded retry with exponential back-off
"""
import functools
import time
from typing import Callable, Optional
from .logging import log, warn
from .. import config as _cfg


def retry_with_backoff(fn: Callable,
                       max_attempts: int,
                       initial_delay: float,
                       multiplier: float = 1.0,
                       max_delay: Optional[float] = None,
                       retry_on: tuple = (Exception,),
                       on_retry: Optional[Callable[[int, BaseException], None]] = None,
                       label: str = ""):
    """
    Call fn() until it returns, at most max_attempts times.

    After a failed attempt (one raising an exception in *retry_on*) sleep,
    grow the delay by *multiplier* (capped at *max_delay*), call
    on_retry(attempt, exc) and try again.  The last exception is re-raised
    once the attempts are used up.
    """
    name = label or getattr(fn, "__name__", "operation")
    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt == max_attempts:
                raise
            warn(f"{name} failed (attempt {attempt}/{max_attempts}): {exc}")
            log(f"  retrying in {delay:.2f}s …")
            time.sleep(delay)
            delay *= multiplier
            if max_delay is not None:
                delay = min(delay, max_delay)
            if on_retry is not None:
                on_retry(attempt, exc)


def retried(retry_on: tuple = (Exception,)):
    """Decorator: retry fn up to RETRY_MAX times with exponential back-off."""

    def decorate(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            return retry_with_backoff(
                lambda: fn(*args, **kwargs),
                max_attempts=_cfg.RETRY_MAX,
                initial_delay=_cfg.RETRY_BASE_DELAY,
                multiplier=2,
                max_delay=60,
                retry_on=retry_on,
                label=fn.__name__,
            )

        return wrapper

    return decorate
