"""Bounded blocking wait on long-running operations.

The poller fetches an operation at a fixed interval until it is done or the
time budget is spent. There is no backoff and no cancellation: each wait is a
plain loop around time.sleep, so the calling thread blocks for up to the
full timeout.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from .config import DEFAULT_OPERATION_POLL_INTERVAL_SECONDS, DEFAULT_OPERATION_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from .client import DiscoveryEngineClient

logger = logging.getLogger(__name__)


class OperationError(Exception):
    """Raised when a long-running operation finishes with an error."""

    def __init__(self, operation_name: str, message: str, code: int | None = None) -> None:
        super().__init__(f"operation {operation_name} failed: {message}")
        self.operation_name = operation_name
        self.code = code


class OperationTimeoutError(OperationError, TimeoutError):
    """Raised when an operation is still running after the time budget."""

    def __init__(self, operation_name: str, timeout_seconds: float) -> None:
        super().__init__(
            operation_name, f"did not complete within {timeout_seconds} seconds"
        )
        self.timeout_seconds = timeout_seconds


class OperationPoller:
    """Waits for operations through a resource client."""

    def __init__(
        self,
        client: DiscoveryEngineClient,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._sleep = sleep
        self._clock = clock

    def wait(
        self,
        operation_name: str,
        fallback_name: str,
        timeout: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
        interval: float = DEFAULT_OPERATION_POLL_INTERVAL_SECONDS,
    ) -> str:
        """Block until an operation is done.

        Args:
            operation_name: Full name of the operation to poll.
            fallback_name: Deterministic resource name, returned when the
                finished operation carries no decodable resource name.
            timeout: Time budget in seconds.
            interval: Seconds to sleep between polls.

        Returns:
            The resource name from the operation response, or fallback_name.

        Raises:
            OperationError: If the operation finished with an error.
            OperationTimeoutError: If the budget ran out first.
            StructuralError: If the operation cannot be read.
            ValueError: If timeout or interval is not positive.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        deadline = self._clock() + timeout
        polls = 0

        while self._clock() < deadline:
            operation = self._client.get_operation(operation_name)
            polls += 1

            if operation.done:
                if operation.error is not None:
                    logger.warning(
                        "Operation failed",
                        extra={
                            "operation": operation_name,
                            "code": operation.error.code,
                            "error": operation.error.message,
                            "polls": polls,
                        },
                    )
                    raise OperationError(
                        operation_name, operation.error.message, code=operation.error.code
                    )

                logger.info(
                    "Operation completed",
                    extra={"operation": operation_name, "polls": polls},
                )
                return operation.resource_name or fallback_name

            logger.debug(
                "Operation still running",
                extra={"operation": operation_name, "polls": polls},
            )
            # Never sleep past the deadline
            self._sleep(max(0.0, min(interval, deadline - self._clock())))

        logger.error(
            "Operation timed out",
            extra={"operation": operation_name, "timeout_seconds": timeout, "polls": polls},
        )
        raise OperationTimeoutError(operation_name, timeout)
