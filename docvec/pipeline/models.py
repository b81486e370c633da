"""Pipeline state model."""

import time
from enum import Enum

from docvec.exceptions import DocvecError
from docvec.logging_config import get_logger
from docvec.observability.metrics import track_pipeline_run

logger = get_logger(__name__)


class PipelineState(str, Enum):
    """Lifecycle of one pipeline invocation."""

    PENDING_EMBED = "pending_embed"
    PENDING_STORE_OP = "pending_store_op"
    DONE = "done"
    FAILED = "failed"


# No transition leads back out of FAILED: pipelines never retry.
_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.PENDING_EMBED: frozenset(
        {PipelineState.PENDING_STORE_OP, PipelineState.FAILED}
    ),
    PipelineState.PENDING_STORE_OP: frozenset(
        {PipelineState.DONE, PipelineState.FAILED}
    ),
    PipelineState.DONE: frozenset(),
    PipelineState.FAILED: frozenset(),
}


class PipelineRun:
    """Tracks a single invocation through its states.

    Holds nothing beyond the invocation it was created for.
    """

    def __init__(self, pipeline: str) -> None:
        self.pipeline = pipeline
        self.state = PipelineState.PENDING_EMBED
        self._start = time.perf_counter()

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def advance(self, state: PipelineState) -> None:
        """Move to the next state.

        Raises:
            RuntimeError: If the transition is not allowed.
        """
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"{self.pipeline}: illegal transition "
                f"{self.state.value} -> {state.value}"
            )
        logger.debug(
            f"{self.pipeline}: {self.state.value} -> {state.value}",
            extra={"pipeline": self.pipeline},
        )
        self.state = state
        if self.terminal:
            track_pipeline_run(
                self.pipeline, state.value, time.perf_counter() - self._start
            )

    def complete(self) -> None:
        """Mark the invocation as done."""
        self.advance(PipelineState.DONE)

    def fail(self, error: BaseException) -> None:
        """Mark the invocation as failed, recording where it stopped."""
        failed_at = self.state
        extra = {"pipeline": self.pipeline, "failed_at": failed_at.value}
        if isinstance(error, DocvecError):
            extra["error_code"] = error.code.value
        logger.error(f"{self.pipeline} failed: {error}", extra=extra)
        self.advance(PipelineState.FAILED)
