"""Deployment ledger: record storage and the status/history query API.

The ledger sits behind an injectable ``DeploymentStore`` so callers can
swap the in-memory default for a durable backend. Stores hold snapshots;
every read returns a deep copy, so no caller can mutate a record that a
running deployment owns.
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

import structlog

from vtex_deploy.errors import DeploymentNotFoundError
from vtex_deploy.schemas.deploy import DeploymentRecord, Environment, VersionBackup

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 10


@runtime_checkable
class DeploymentStore(Protocol):
    """Protocol for deployment record persistence."""

    def save(self, record: DeploymentRecord) -> None:
        """Insert or replace the snapshot stored under ``record.id``."""
        ...

    def get(self, deployment_id: str) -> DeploymentRecord | None: ...

    def list_records(self) -> list[DeploymentRecord]: ...

    def save_backup(self, backup: VersionBackup) -> None: ...

    def list_backups(self) -> list[VersionBackup]: ...


class InMemoryDeploymentStore:
    """Process-local store; contents are lost when the process exits."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, DeploymentRecord] = {}
        self._backups: list[VersionBackup] = []

    def save(self, record: DeploymentRecord) -> None:
        with self._lock:
            self._records[record.id] = record.model_copy(deep=True)

    def get(self, deployment_id: str) -> DeploymentRecord | None:
        with self._lock:
            record = self._records.get(deployment_id)
            return record.model_copy(deep=True) if record is not None else None

    def list_records(self) -> list[DeploymentRecord]:
        with self._lock:
            return [record.model_copy(deep=True) for record in self._records.values()]

    def save_backup(self, backup: VersionBackup) -> None:
        with self._lock:
            self._backups.append(backup)

    def list_backups(self) -> list[VersionBackup]:
        with self._lock:
            return list(self._backups)


class DeploymentLedger:
    """Registry of deployment records with read-only query views.

    Example:
        >>> ledger = DeploymentLedger()
        >>> ledger.get_history(Environment.QA)
        []
    """

    def __init__(self, store: DeploymentStore | None = None) -> None:
        self._store: DeploymentStore = store or InMemoryDeploymentStore()

    @property
    def store(self) -> DeploymentStore:
        return self._store

    def record(self, record: DeploymentRecord) -> None:
        """Persist the current state of ``record``."""
        self._store.save(record)

    def get_status(self, deployment_id: str) -> DeploymentRecord:
        """Return the current snapshot of a deployment.

        Raises:
            DeploymentNotFoundError: If the id is unknown.
        """
        record = self._store.get(deployment_id)
        if record is None:
            raise DeploymentNotFoundError(deployment_id)
        return record

    def get_history(
        self,
        environment: Environment,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[DeploymentRecord]:
        """Records for ``environment``, newest start time first, at most ``limit``."""
        if limit <= 0:
            return []
        records = [r for r in self._store.list_records() if r.environment == environment]
        records.sort(key=lambda r: r.start_time, reverse=True)
        history = records[:limit]
        logger.debug(
            "deployment_history_retrieved",
            environment=environment.value,
            count=len(history),
            limit=limit,
        )
        return history

    def record_backup(self, backup: VersionBackup) -> None:
        self._store.save_backup(backup)


__all__: list[str] = [
    "DEFAULT_HISTORY_LIMIT",
    "DeploymentLedger",
    "DeploymentStore",
    "InMemoryDeploymentStore",
]
