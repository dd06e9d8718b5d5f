"""Poll-until-condition engine.

Every "wait for X" operation in es_verify is a specialization of
wait_for_value() with a specific check closure. Unlike a plain retry loop,
an exception raised by the check is never treated as "not ready yet": it
aborts the wait immediately, because transport and fetch errors usually
point at a tunnel or credential problem that polling cannot fix.

Functions:
    wait_for_value: Poll a check until it returns an expected value
    wait_until: Poll a boolean predicate according to a PollSpec

Example:
    from es_verify.polling import PollSpec, wait_until

    spec = PollSpec(interval=1.0, timeout=30.0, expected=True)
    wait_until(lambda: job_done("cleaner"), spec, description="cleaner job")
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from es_verify.errors import DeadlineExceededError
from es_verify.tracing import get_tracer, verification_span

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Seconds a sleep may overrun the deadline and still be followed by a check
DEADLINE_SLACK = 0.05


class PollSpec(BaseModel):
    """Interval/timeout policy for a single wait.

    Attributes:
        interval: Minimum seconds between the starts of two checks.
        timeout: Seconds after which no new check is started.
        expected: Value the predicate must return to finish the wait.
        immediate: Run the first check before the first sleep.

    Example:
        spec = PollSpec(interval=10.0, timeout=300.0, expected=False)
    """

    model_config = ConfigDict(frozen=True)

    interval: float = Field(gt=0.0, description="Poll interval in seconds")
    timeout: float = Field(gt=0.0, description="Maximum wait time in seconds")
    expected: bool = Field(default=True, description="Predicate value to wait for")
    immediate: bool = Field(
        default=False,
        description="Check once before sleeping for the first interval",
    )

    @model_validator(mode="after")
    def check_timeout_covers_interval(self) -> PollSpec:
        if self.timeout < self.interval:
            msg = f"timeout ({self.timeout}s) must be >= interval ({self.interval}s)"
            raise ValueError(msg)
        return self


def wait_for_value(
    check: Callable[[], T],
    expected: T,
    *,
    interval: float,
    timeout: float,
    immediate: bool = False,
    description: str = "condition",
) -> T:
    """Poll check until it returns expected or the deadline passes.

    Checks run strictly one after another. The start of each check is at
    least ``interval`` seconds after the start of the previous one, and no
    check is scheduled once ``timeout`` seconds have elapsed. A check already
    running when the deadline passes is allowed to finish, and a matching
    result from it still counts as success.

    Args:
        check: Callable returning the observed value. Exceptions it raises
            propagate to the caller unchanged.
        expected: Value that ends the wait.
        interval: Seconds between check starts. Must be positive.
        timeout: Seconds after which no new check starts.
        immediate: If True, check once before the first sleep.
        description: Description used in logs and the deadline error.

    Returns:
        The matching value returned by check.

    Raises:
        DeadlineExceededError: If no check returned expected in time.
        ValueError: If interval is not positive or timeout < interval.
    """
    if interval <= 0:
        msg = f"interval must be positive, got {interval}"
        raise ValueError(msg)
    if timeout < interval:
        msg = f"timeout ({timeout}s) must be >= interval ({interval}s)"
        raise ValueError(msg)

    start = time.monotonic()
    deadline = start + timeout
    attempts = 0
    last_value: Any = None
    next_start = start if immediate else start + interval

    with verification_span(
        get_tracer(),
        "poll",
        extra_attributes={
            "poll.description": description,
            "poll.interval": interval,
            "poll.timeout": timeout,
        },
    ) as span:
        while next_start <= deadline:
            delay = next_start - time.monotonic()
            if delay > 0:
                time.sleep(delay)
                if time.monotonic() > deadline + DEADLINE_SLACK:
                    break

            check_started = time.monotonic()
            attempts += 1
            last_value = check()
            if last_value == expected:
                span.set_attribute("poll.attempts", attempts)
                logger.debug(
                    "poll.condition_met",
                    description=description,
                    attempts=attempts,
                    elapsed=round(time.monotonic() - start, 3),
                )
                return last_value

            logger.debug(
                "poll.condition_pending",
                description=description,
                attempt=attempts,
                observed=last_value,
                expected=expected,
            )
            next_start = max(check_started + interval, time.monotonic())

        elapsed = time.monotonic() - start
        span.set_attribute("poll.attempts", attempts)
        logger.warning(
            "poll.deadline_exceeded",
            description=description,
            attempts=attempts,
            elapsed=round(elapsed, 3),
            last_value=last_value,
            expected=expected,
        )
        raise DeadlineExceededError(
            description,
            timeout=timeout,
            elapsed=elapsed,
            attempts=attempts,
            expected=expected,
            last_value=last_value,
        )


def wait_until(
    check: Callable[[], bool],
    spec: PollSpec,
    *,
    description: str = "condition",
) -> None:
    """Poll a boolean predicate until it equals ``spec.expected``.

    Args:
        check: Predicate to evaluate. Exceptions propagate immediately.
        spec: Interval, timeout and expected value.
        description: Description used in logs and the deadline error.

    Raises:
        DeadlineExceededError: If the predicate never matched in time.
    """
    wait_for_value(
        check,
        spec.expected,
        interval=spec.interval,
        timeout=spec.timeout,
        immediate=spec.immediate,
        description=description,
    )


__all__ = [
    "PollSpec",
    "wait_for_value",
    "wait_until",
]
