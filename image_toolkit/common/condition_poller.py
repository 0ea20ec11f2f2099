"""
Condition polling primitive.

Repeatedly queries a remote resource through a caller-supplied accessor until
a predicate holds, a bound is exhausted, or the accessor fails fatally. Every
wait in the image workflow (instance boot, shutdown, endpoint reachability,
image and gallery import readiness) is one PollRequest run through
ConditionPoller.

Accessor failures are classified by the caller: exceptions accepted by
``PollRequest.is_transient`` count as "not ready yet", anything else ends the
poll with a Failed outcome. Transient failures are never surfaced.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from threading import Event
from typing import Any, Callable, Optional, Union

from image_toolkit.common.exceptions import PollTimeoutError, TransientProviderError

logger = logging.getLogger(__name__)


def is_transient_provider_error(error: BaseException) -> bool:
    """Default classifier: only TransientProviderError means "retry"."""
    return isinstance(error, TransientProviderError)


@dataclass(frozen=True)
class PollRequest:  # pylint: disable=too-many-instance-attributes
    """Describes one polling operation.

    ``max_attempts`` and ``max_duration`` have no defaults so every call site
    states its budget. Passing ``None`` for both polls without bound.
    """

    accessor: Callable[[], Any]
    predicate: Callable[[Any], bool]
    interval: float
    max_attempts: Optional[int]
    max_duration: Optional[float]
    is_transient: Callable[[BaseException], bool] = field(default=is_transient_provider_error)
    description: str = "condition"

    def __post_init__(self):
        if self.interval < 0:
            raise ValueError(f"interval must be non-negative, got {self.interval}")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.max_duration is not None and self.max_duration < 0:
            raise ValueError(f"max_duration must be non-negative, got {self.max_duration}")

    @property
    def bounded(self) -> bool:
        return self.max_attempts is not None or self.max_duration is not None


@dataclass(frozen=True)
class Satisfied:
    """The predicate held on the most recent accessor result."""

    status: Any
    attempts: int


@dataclass(frozen=True)
class TimedOut:
    """The budget ran out before the predicate held."""

    last_status: Any
    attempts: int


@dataclass(frozen=True)
class Failed:
    """The accessor raised a non-transient error."""

    error: BaseException
    attempts: int


PollOutcome = Union[Satisfied, TimedOut, Failed]


class ConditionPoller:  # pylint: disable=too-few-public-methods
    """Runs PollRequests with an injectable sleep and clock."""

    def __init__(
        self,
        sleep: Optional[Callable[[float], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._wait_event = Event()
        self._sleep = sleep or self._wait_event.wait
        self._clock = clock

    def poll(self, request: PollRequest) -> PollOutcome:
        """Block until the request is satisfied, times out, or fails."""
        if not request.bounded:
            logger.warning("Polling for %s without a timeout", request.description)
        started = self._clock()
        attempts = 0
        last_status = None
        while True:
            attempts += 1
            try:
                status = request.accessor()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                if not request.is_transient(exc):
                    logger.debug(
                        "%s: attempt %d failed fatally: %s", request.description, attempts, exc
                    )
                    return Failed(exc, attempts)
                logger.debug(
                    "%s: attempt %d not ready (%s)", request.description, attempts, exc
                )
            else:
                last_status = status
                if request.predicate(status):
                    logger.debug(
                        "%s: satisfied on attempt %d with %s",
                        request.description,
                        attempts,
                        status,
                    )
                    return Satisfied(status, attempts)
                logger.debug(
                    "%s: attempt %d observed %s", request.description, attempts, status
                )

            if request.max_attempts is not None and attempts >= request.max_attempts:
                return TimedOut(last_status, attempts)
            if (
                request.max_duration is not None
                and self._clock() - started >= request.max_duration
            ):
                return TimedOut(last_status, attempts)
            self._sleep(request.interval)


def require_satisfied(outcome: PollOutcome, description: str = "condition"):
    """
    Return the final status of a Satisfied outcome.

    Raises:
        PollTimeoutError: If the outcome is TimedOut
        Exception: The accessor's original error if the outcome is Failed
    """
    if isinstance(outcome, Satisfied):
        return outcome.status
    if isinstance(outcome, TimedOut):
        raise PollTimeoutError(description, outcome.attempts, outcome.last_status)
    raise outcome.error
