"""
LockManager - find and release stale Terraform state locks.

A lock is stale when its age (now - Created) exceeds a threshold;
such locks are usually left behind by a killed terragrunt process and
block every later run with "Error acquiring the state lock".

Locks whose creation time cannot be determined are never treated as
stale. They are reported in a separate unknown-age bucket so an
operator can decide about them explicitly.

Releasing is a conditional delete: the item is removed only if it still
carries the metadata we scanned. If another operator released the lock
(or a new run re-acquired it) in the meantime, the release reports
ALREADY_RELEASED instead of raising.

The manager never creates locks and is only used between orchestrator
runs.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from stackorch.errors import LockReleaseRace, LockTableError
from stackorch.schemas import LockEntry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# LOCK TABLES
# =============================================================================


class LockTable(ABC):
    """
    Key-value store holding state locks.

    Implementations must provide scan, get and a conditional delete.
    """

    @abstractmethod
    def scan(self) -> Iterator[LockEntry]:
        """Yield every entry in the table."""
        pass

    @abstractmethod
    def get(self, lock_id: str) -> Optional[LockEntry]:
        """Return the entry keyed by lock_id, or None."""
        pass

    @abstractmethod
    def delete_if_unchanged(self, entry: LockEntry) -> bool:
        """
        Delete entry if it still exists with the same metadata.

        Returns:
            True if deleted, False if it was already gone or has changed
        """
        pass


class InMemoryLockTable(LockTable):
    """
    In-memory lock table for testing.

    Items map lock_id to the raw Info text (None for items without one).
    """

    def __init__(self, items: Optional[dict[str, Optional[str]]] = None):
        self._items: dict[str, Optional[str]] = dict(items or {})

    def put(self, lock_id: str, info: Optional[str]) -> None:
        self._items[lock_id] = info

    def scan(self) -> Iterator[LockEntry]:
        for lock_id, info in list(self._items.items()):
            yield LockEntry.from_info(lock_id, info, is_digest=lock_id.endswith("-md5"))

    def get(self, lock_id: str) -> Optional[LockEntry]:
        if lock_id not in self._items:
            return None
        return LockEntry.from_info(lock_id, self._items[lock_id], is_digest=lock_id.endswith("-md5"))

    def delete_if_unchanged(self, entry: LockEntry) -> bool:
        if entry.lock_id not in self._items:
            return False
        if self._items[entry.lock_id] != entry.info:
            return False
        del self._items[entry.lock_id]
        return True

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, lock_id: object) -> bool:
        return lock_id in self._items


class DynamoDBLockTable(LockTable):
    """
    Terraform's DynamoDB lock table.

    Items are keyed by the string attribute LockID. Held locks carry an
    Info string attribute; "<path>-md5" items carry a Digest instead.
    """

    def __init__(self, table_name: str, region: Optional[str] = None, client=None):
        self.table_name = table_name
        self.region = region
        self._client = client or boto3.client("dynamodb", region_name=region)

    def scan(self) -> Iterator[LockEntry]:
        try:
            paginator = self._client.get_paginator("scan")
            for page in paginator.paginate(TableName=self.table_name):
                for item in page.get("Items", []):
                    yield _entry_from_item(item)
        except (ClientError, BotoCoreError) as e:
            raise LockTableError(f"Failed to scan lock table {self.table_name}: {e}") from e

    def get(self, lock_id: str) -> Optional[LockEntry]:
        try:
            response = self._client.get_item(
                TableName=self.table_name,
                Key={"LockID": {"S": lock_id}},
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise LockTableError(f"Failed to read lock {lock_id}: {e}") from e
        item = response.get("Item")
        return _entry_from_item(item) if item else None

    def delete_if_unchanged(self, entry: LockEntry) -> bool:
        request = {
            "TableName": self.table_name,
            "Key": {"LockID": {"S": entry.lock_id}},
        }
        if entry.info is None:
            request["ConditionExpression"] = "attribute_exists(LockID) AND attribute_not_exists(Info)"
        else:
            request["ConditionExpression"] = "attribute_exists(LockID) AND Info = :info"
            request["ExpressionAttributeValues"] = {":info": {"S": entry.info}}

        try:
            self._client.delete_item(**request)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            raise LockTableError(f"Failed to delete lock {entry.lock_id}: {e}") from e
        except BotoCoreError as e:
            raise LockTableError(f"Failed to delete lock {entry.lock_id}: {e}") from e
        return True


def _entry_from_item(item: dict) -> LockEntry:
    lock_id = item["LockID"]["S"]
    info = item.get("Info", {}).get("S")
    is_digest = "Digest" in item or lock_id.endswith("-md5")
    return LockEntry.from_info(lock_id, info, is_digest=is_digest)


# =============================================================================
# RESULTS
# =============================================================================


class ReleaseReason(str, Enum):
    ALREADY_RELEASED = "already_released"
    NOT_A_LOCK = "not_a_lock"
    ERROR = "error"


@dataclass(frozen=True)
class ReleaseResult:
    """Outcome of releasing one lock."""
    lock_id: str
    success: bool
    reason: Optional[ReleaseReason] = None
    detail: Optional[str] = None

    def raise_for_status(self) -> None:
        """Raise LockReleaseRace or LockTableError for a failed release."""
        if self.success:
            return
        if self.reason == ReleaseReason.ALREADY_RELEASED:
            raise LockReleaseRace(self.lock_id, self.detail)
        raise LockTableError(self.detail or f"Failed to release lock {self.lock_id}")


@dataclass
class LockScanReport:
    """
    Lock table entries grouped by age.

    Attributes:
        stale: Locks older than the threshold
        fresh: Locks within the threshold
        unknown_age: Locks whose creation time is missing or unparsable
        ignored: Digest items that are not locks
    """
    max_age_seconds: float
    scanned_at: datetime
    stale: list[LockEntry] = field(default_factory=list)
    fresh: list[LockEntry] = field(default_factory=list)
    unknown_age: list[LockEntry] = field(default_factory=list)
    ignored: list[LockEntry] = field(default_factory=list)

    def age_of(self, entry: LockEntry) -> Optional[float]:
        return entry.age_seconds(self.scanned_at)


@dataclass(frozen=True)
class LockCleanupOutcome:
    """What happened to one stale lock during clean()."""
    entry: LockEntry
    result: Optional[ReleaseResult] = None

    @property
    def declined(self) -> bool:
        return self.result is None


@dataclass
class LockCleanupReport:
    """The scan clean() acted on and what happened to each stale lock."""
    scan: LockScanReport
    outcomes: list[LockCleanupOutcome] = field(default_factory=list)

    @property
    def released(self) -> list[str]:
        return [o.entry.lock_id for o in self.outcomes if o.result is not None and o.result.success]


# =============================================================================
# MANAGER
# =============================================================================


class LockManager:
    """
    Reads the lock table and conditionally deletes stale entries.

    Usage:
        manager = LockManager(DynamoDBLockTable("terraform-locks", "us-east-1"))
        report = manager.scan(max_age_seconds=10800)
        for entry in report.stale:
            manager.release(entry)
    """

    def __init__(self, table: LockTable, clock: Callable[[], datetime] = _utcnow):
        self._table = table
        self._clock = clock

    def scan(self, max_age_seconds: float) -> LockScanReport:
        """Scan the whole table and sort entries into stale, fresh and unknown-age."""
        report = LockScanReport(max_age_seconds=max_age_seconds, scanned_at=self._clock())

        for entry in self._table.scan():
            if entry.is_digest:
                report.ignored.append(entry)
                continue

            age = entry.age_seconds(report.scanned_at)
            if age is None:
                logger.warning(f"Cannot determine age of lock {entry.lock_id}")
                report.unknown_age.append(entry)
            elif age > max_age_seconds:
                logger.info(f"Stale lock {entry.lock_id} (age {int(age)}s)")
                report.stale.append(entry)
            else:
                report.fresh.append(entry)

        return report

    def list_stale_locks(self, max_age_seconds: float) -> list[LockEntry]:
        return self.scan(max_age_seconds).stale

    def release(self, entry: LockEntry) -> ReleaseResult:
        """
        Delete a lock if it is unchanged since it was read.

        Returns:
            ReleaseResult; a concurrent release or re-acquire is reported as
            ALREADY_RELEASED, a table failure as ERROR.
        """
        try:
            deleted = self._table.delete_if_unchanged(entry)
        except LockTableError as e:
            logger.error(str(e))
            return ReleaseResult(entry.lock_id, False, ReleaseReason.ERROR, str(e))

        if not deleted:
            logger.warning(f"Lock {entry.lock_id} was already released or re-acquired")
            return ReleaseResult(
                entry.lock_id, False, ReleaseReason.ALREADY_RELEASED,
                "lock no longer exists or has a new holder",
            )

        logger.info(f"Released lock {entry.lock_id}")
        return ReleaseResult(entry.lock_id, True)

    def release_by_id(self, lock_id: str) -> ReleaseResult:
        """Look up a lock by id and release it."""
        try:
            entry = self._table.get(lock_id)
        except LockTableError as e:
            logger.error(str(e))
            return ReleaseResult(lock_id, False, ReleaseReason.ERROR, str(e))

        if entry is None:
            return ReleaseResult(lock_id, False, ReleaseReason.ALREADY_RELEASED, "lock no longer exists")
        if entry.is_digest:
            logger.warning(f"Refusing to release {lock_id}: state digest, not a lock")
            return ReleaseResult(lock_id, False, ReleaseReason.NOT_A_LOCK, "state digest, not a lock")
        return self.release(entry)

    def clean(
        self,
        max_age_seconds: float,
        confirm: Callable[[LockEntry], bool],
    ) -> LockCleanupReport:
        """
        Release stale locks the confirm callback approves.

        Unknown-age locks are left alone; use release_by_id for those.
        """
        cleanup = LockCleanupReport(scan=self.scan(max_age_seconds))
        for entry in cleanup.scan.stale:
            if not confirm(entry):
                logger.info(f"Skipping lock {entry.lock_id}")
                cleanup.outcomes.append(LockCleanupOutcome(entry))
                continue
            cleanup.outcomes.append(LockCleanupOutcome(entry, self.release(entry)))
        return cleanup
