"""
RuleVault - Versioned artifact store.

Holds the ordered history of committed rule-set versions. Callers never
touch status flags: the only mutation is ``commit_version``, which runs
under a single lock so two commits can never both demote the same
"previous current" record.
"""

import logging
import threading
from datetime import date
from typing import TYPE_CHECKING, Iterable, Optional

from .diff import RuleDiff, diff_rules
from .exceptions import NotFoundError
from .models import (
    BreachRecord,
    ChangeSummary,
    RuleRecord,
    VersionRecord,
    VersionStatus,
)

if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger("rulevault.store")


def version_id(ordinal: int) -> str:
    return f"v{ordinal}"


def version_label(ordinal: int) -> str:
    return f"Version {ordinal}.0"


class ArtifactStore:
    """
    In-memory, append-only version history with a single ``current`` pointer.

    Example:
        ```python
        store = ArtifactStore()
        v1 = store.commit_version(rules, "IMA_eg1.pdf", score=75)
        assert store.select_current().id == v1.id
        ```
    """

    def __init__(self, versions: Optional[Iterable[VersionRecord]] = None):
        self._lock = threading.Lock()
        self._versions: list[VersionRecord] = []
        for record in versions or []:
            self._versions.append(record.snapshot())
        self._check_invariants()

    def _check_invariants(self) -> None:
        current = [v for v in self._versions if v.is_current]
        if len(current) > 1:
            raise ValueError(
                f"Version history has {len(current)} current versions: "
                + ", ".join(v.id for v in current)
            )
        ordinals = [v.ordinal for v in self._versions]
        if ordinals != sorted(set(ordinals)):
            raise ValueError("Version ordinals must be unique and increasing")

    def _current_locked(self) -> Optional[VersionRecord]:
        for record in reversed(self._versions):
            if record.is_current:
                return record
        return None

    def _persist(self, record: VersionRecord, demoted: Optional[VersionRecord]) -> None:
        """Hook for durable stores; runs inside the commit lock before memory changes."""

    def commit_version(
        self,
        rules: Iterable[RuleRecord],
        filename: str,
        score: Optional[float] = None,
        breaches: Optional[Iterable[BreachRecord]] = None,
        upload_date: Optional[date] = None,
    ) -> VersionRecord:
        """
        Append a new current version and archive the previous one.

        The change summary is computed against the version that was current
        at the moment the lock was taken and is frozen on the new record.

        Returns:
            A snapshot of the newly created VersionRecord.
        """
        rules = list(rules)
        breaches = list(breaches or [])

        with self._lock:
            previous = self._current_locked()
            if previous is None:
                changes = ChangeSummary(added=len(rules))
            else:
                changes = diff_rules(previous.rules, rules).summary()

            ordinal = (self._versions[-1].ordinal if self._versions else 0) + 1
            record = VersionRecord(
                id=version_id(ordinal),
                ordinal=ordinal,
                label=version_label(ordinal),
                filename=filename,
                upload_date=upload_date or date.today(),
                rule_count=len(rules),
                status=VersionStatus.CURRENT,
                changes=changes,
                rules=rules,
                compliance_score=score,
                breaches=breaches,
            )

            self._persist(record, previous)

            if previous is not None:
                previous.status = VersionStatus.ARCHIVED
            self._versions.append(record)

        logger.info(
            "Committed %s (%s) with %d rules: +%d -%d ~%d",
            record.id,
            filename,
            record.rule_count,
            changes.added,
            changes.removed,
            changes.modified,
        )
        return record.snapshot()

    def get_version(self, version_id: str) -> VersionRecord:
        with self._lock:
            for record in self._versions:
                if record.id == version_id:
                    return record.snapshot()
        raise NotFoundError(f"Version {version_id} not found", status_code=404)

    def list_versions(self) -> list[VersionRecord]:
        """All versions in commit order."""
        with self._lock:
            return [record.snapshot() for record in self._versions]

    def select_current(self) -> Optional[VersionRecord]:
        with self._lock:
            current = self._current_locked()
            return current.snapshot() if current else None

    def diff(self, old_version_id: str, new_version_id: str) -> RuleDiff:
        old = self.get_version(old_version_id)
        new = self.get_version(new_version_id)
        return diff_rules(old.rules, new.rules)

    def __len__(self) -> int:
        with self._lock:
            return len(self._versions)


class PersistentArtifactStore(ArtifactStore):
    """ArtifactStore that writes every commit to the database and reloads history on start."""

    def __init__(self, database: "Database"):
        self.database = database
        session = database.get_session()
        try:
            versions = [model.to_record() for model in database.list_versions(session)]
        finally:
            session.close()
        super().__init__(versions)
        logger.info("Loaded %d versions from %s", len(versions), database.database_url)

    def _persist(self, record: VersionRecord, demoted: Optional[VersionRecord]) -> None:
        session = self.database.get_session()
        try:
            self.database.record_commit(
                session,
                record,
                demoted_ordinal=demoted.ordinal if demoted else None,
            )
        finally:
            session.close()
