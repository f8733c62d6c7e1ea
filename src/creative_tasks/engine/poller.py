"""Submit long-running generation work and poll it to a terminal state."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from creative_tasks.engine.base import (
    EngineRequest,
    GenerationEngine,
    OperationHandle,
    OperationStatus,
)
from creative_tasks.errors import EngineError, PollTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_POLL_MAX_ATTEMPTS = 60


class LongRunningOperationPoller:
    """Fixed-interval polling with a single attempt budget.

    Incomplete checks and transport failures share one counter, so a flaky
    network cannot extend the budget.
    """

    def __init__(
        self,
        engine: GenerationEngine,
        *,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._sleep = sleep

    def submit(self, model_id: str, request: EngineRequest) -> OperationHandle:
        """Start the operation; failures propagate without retry."""

        outcome = self.engine.invoke(
            model_id,
            request.prompt,
            request.inputs,
            request.parameters,
        )
        if not isinstance(outcome, OperationHandle):
            raise EngineError(f"Model {model_id} did not return an operation handle.")
        logger.info("Submitted operation %s for model %s", outcome.name, model_id)
        return outcome

    def poll(self, handle: OperationHandle, model_id: str | None = None) -> OperationStatus:
        """One non-blocking check of the operation."""

        return self.engine.check_operation(handle, model_id or handle.model_id)

    def await_completion(
        self,
        handle: OperationHandle,
        model_id: str | None = None,
        *,
        interval_seconds: float | None = None,
        max_attempts: int | None = None,
    ) -> OperationStatus:
        """Poll until the operation is done or the attempt budget runs out.

        Returns the terminal status (which may carry an error result). Raises
        `PollTimeoutError` after the last attempt; the operation itself keeps
        running remotely and is never observed again.
        """

        interval = self.interval_seconds if interval_seconds is None else interval_seconds
        budget = self.max_attempts if max_attempts is None else max_attempts
        if budget <= 0:
            raise ValueError("max_attempts must be > 0")

        last_error: Exception | None = None
        for attempt in range(1, budget + 1):
            try:
                status = self.poll(handle, model_id)
            except Exception as error:  # noqa: BLE001
                last_error = error
                logger.warning(
                    "Poll %d/%d for %s failed: %s",
                    attempt,
                    budget,
                    handle.name,
                    error,
                )
            else:
                if status.done:
                    logger.info(
                        "Operation %s finished after %d polls (error=%s)",
                        handle.name,
                        attempt,
                        status.error is not None,
                    )
                    return status
                logger.debug("Operation %s pending (poll %d/%d)", handle.name, attempt, budget)
            if attempt < budget:
                self._sleep(interval)

        logger.warning("Operation %s timed out after %d polls", handle.name, budget)
        raise PollTimeoutError(operation_name=handle.name, attempts=budget, last_error=last_error)
