"""Ordered, named deployment steps and the runner that executes them.

Every deployment path is a list of ``Step`` objects executed strictly in
order by a ``StepRunner``. The runner is the single place where
cancellation is checked, the per-step time budget is applied, a span is
opened, and a success line is appended to the owning record's audit log.

A step that raises leaves the exception untouched; the runner only notes
which step failed and the ErrorKind to record for it.
"""

from __future__ import annotations

import contextvars
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from vtex_deploy.errors import (
    DeployError,
    DeploymentCancelledError,
    ErrorKind,
    StepTimeoutError,
)
from vtex_deploy.telemetry.tracing import create_span

if TYPE_CHECKING:
    from vtex_deploy.ledger import DeploymentLedger
    from vtex_deploy.schemas.deploy import DeploymentRecord

logger = structlog.get_logger(__name__)


class Phase(str, Enum):
    """Orchestrator state machine phases."""

    INIT = "init"
    VALIDATING = "validating"
    AUTHENTICATING = "authenticating"
    RELEASING = "releasing"
    INSTALLING = "installing"
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLING_BACK = "rolling_back"


class CancellationToken:
    """Cooperative cancellation signal checked between steps.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.cancelled
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class Step:
    """One named unit of work in a deployment path.

    Attributes:
        name: Step name, used for spans and timeout errors.
        phase: State machine phase the step belongs to.
        action: Callable performing the work. A returned ``str`` replaces
            ``message``; any other return value is ignored.
        failure_kind: ErrorKind recorded when the action raises something
            that is not a DeployError.
        message: Audit line appended after success.
    """

    name: str
    phase: Phase
    action: Callable[[], object]
    failure_kind: ErrorKind = ErrorKind.PLATFORM
    message: str | None = None


class StepRunner:
    """Run steps for one deployment record under a shared time budget.

    Args:
        record: The record owned by this run; success lines go to its log.
        ledger: Ledger receiving a snapshot after each completed step.
        budget_seconds: Total time allowed for all steps of the run.
        step_timeout_seconds: Optional cap for any single step.
        cancel_token: Cancellation signal checked before each step.
    """

    def __init__(
        self,
        record: DeploymentRecord,
        ledger: DeploymentLedger,
        *,
        budget_seconds: float,
        step_timeout_seconds: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self._record = record
        self._ledger = ledger
        self._deadline = time.monotonic() + budget_seconds
        self._step_timeout = step_timeout_seconds
        self._cancel_token = cancel_token or CancellationToken()
        self._log = logger.bind(deployment_id=record.id)

        self.phase = Phase.INIT
        self.failed_step: Step | None = None
        self.failure_kind: ErrorKind | None = None
        self._timed_out: list[tuple[Step, Future[object]]] = []

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel_token

    def remaining_seconds(self) -> float:
        return self._deadline - time.monotonic()

    def wait_for_timed_out_steps(self, timeout: float) -> list[Step]:
        """Wait up to ``timeout`` seconds for timed-out step actions to return.

        Returns:
            Steps whose action is still running after the wait.
        """
        if not self._timed_out:
            return []
        wait_futures([future for _, future in self._timed_out], timeout=timeout)
        still_running = [step for step, future in self._timed_out if not future.done()]
        if still_running:
            self._log.warning(
                "timed_out_steps_still_running",
                steps=[step.name for step in still_running],
                waited_seconds=timeout,
            )
        return still_running

    def run_all(self, steps: Iterable[Step]) -> None:
        for step in steps:
            self.run(step)

    def run(self, step: Step) -> None:
        """Execute ``step`` or raise its error unchanged.

        Raises:
            DeploymentCancelledError: If cancellation was requested.
            StepTimeoutError: If the step exceeds its time budget.
        """
        try:
            if self._cancel_token.cancelled:
                raise DeploymentCancelledError(self._record.id, before_step=step.name)

            if step.phase != self.phase:
                self._log.info("phase_changed", from_phase=self.phase.value, to_phase=step.phase.value)
                self.phase = step.phase

            timeout = self._timeout_for_step()
            if timeout <= 0:
                raise StepTimeoutError(step.name, 0)

            with create_span(
                f"vtex_deploy.step.{step.name}",
                attributes={
                    "deploy.id": self._record.id,
                    "deploy.phase": step.phase.value,
                },
            ):
                result = self._call_with_timeout(step, timeout)
        except Exception as e:
            self.failed_step = step
            self.failure_kind = e.kind if isinstance(e, DeployError) else step.failure_kind
            self._log.warning(
                "step_failed",
                step=step.name,
                error_kind=self.failure_kind.value,
                error_type=type(e).__name__,
            )
            raise

        message = result if isinstance(result, str) else step.message
        if message:
            self._record.append_log(message)
        self._ledger.record(self._record)
        self._log.debug("step_completed", step=step.name)

    def _timeout_for_step(self) -> float:
        remaining = self.remaining_seconds()
        if self._step_timeout is not None:
            return min(self._step_timeout, remaining)
        return remaining

    def _call_with_timeout(self, step: Step, timeout: float) -> object:
        # The worker runs in a copy of this context so spans and bound log
        # context stay attached. A timed-out worker cannot be killed. Its future
        # is kept for wait_for_timed_out_steps and its result is discarded.
        ctx = contextvars.copy_context()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"step-{step.name}")
        try:
            future = executor.submit(ctx.run, step.action)
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError:
                if future.done():
                    # the action itself raised TimeoutError
                    raise
                self._timed_out.append((step, future))
                raise StepTimeoutError(step.name, timeout) from None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)


__all__: list[str] = ["CancellationToken", "Phase", "Step", "StepRunner"]
