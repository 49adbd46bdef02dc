"""Per-(account, workspace) leases serializing deployments to one target.

Two deployments installing into the same workspace at once can leave the
platform-side workspace in a mixed state. A lease is taken before
authentication and held until the deployment reaches a terminal state.
Leases are reentrant for the same owner so an auto-rollback can run inside
the failed deployment's lease.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from vtex_deploy.errors import LeaseUnavailableError

logger = structlog.get_logger(__name__)


@dataclass
class _Lease:
    owner: str
    depth: int
    acquired_at: datetime


@dataclass(frozen=True)
class LeaseInfo:
    """Snapshot of a held lease."""

    account: str
    workspace: str
    owner: str
    acquired_at: datetime


class WorkspaceLeaseManager:
    """Mutual exclusion keyed by (account, workspace).

    Example:
        >>> leases = WorkspaceLeaseManager()
        >>> with leases.hold("mystore", "qa", owner="deploy_1"):
        ...     leases.holder("mystore", "qa").owner
        'deploy_1'
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._leases: dict[tuple[str, str], _Lease] = {}

    def acquire(
        self,
        account: str,
        workspace: str,
        owner: str,
        timeout: float | None = 30.0,
    ) -> None:
        """Block until the lease is free or already held by ``owner``.

        Raises:
            LeaseUnavailableError: If another owner still holds it after ``timeout``.
        """
        key = (account, workspace)
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                lease = self._leases.get(key)
                if lease is None:
                    self._leases[key] = _Lease(owner, 1, datetime.now(timezone.utc))
                    logger.debug("lease_acquired", account=account, workspace=workspace, owner=owner)
                    return
                if lease.owner == owner:
                    lease.depth += 1
                    return
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise LeaseUnavailableError(
                        account, workspace, lease.owner, timeout or 0.0
                    )
                logger.info(
                    "lease_wait",
                    account=account,
                    workspace=workspace,
                    owner=owner,
                    holder=lease.owner,
                )
                self._cond.wait(remaining)

    def release(self, account: str, workspace: str, owner: str) -> None:
        key = (account, workspace)
        with self._cond:
            lease = self._leases.get(key)
            if lease is None or lease.owner != owner:
                logger.warning(
                    "lease_release_not_held",
                    account=account,
                    workspace=workspace,
                    owner=owner,
                )
                return
            lease.depth -= 1
            if lease.depth == 0:
                del self._leases[key]
                logger.debug("lease_released", account=account, workspace=workspace, owner=owner)
                self._cond.notify_all()

    @contextmanager
    def hold(
        self,
        account: str,
        workspace: str,
        owner: str,
        timeout: float | None = 30.0,
    ) -> Iterator[None]:
        self.acquire(account, workspace, owner, timeout)
        try:
            yield
        finally:
            self.release(account, workspace, owner)

    def holder(self, account: str, workspace: str) -> LeaseInfo | None:
        with self._cond:
            lease = self._leases.get((account, workspace))
            if lease is None:
                return None
            return LeaseInfo(account, workspace, lease.owner, lease.acquired_at)


__all__: list[str] = ["LeaseInfo", "WorkspaceLeaseManager"]
