"""
Lock schemas - entries of the Terraform state-lock table.

Terraform's DynamoDB backend stores one item per held lock, keyed by
LockID, with an Info attribute containing JSON metadata such as:

    {"ID":"3f2c...","Operation":"OperationTypeApply","Who":"ci@runner",
     "Version":"1.5.7","Created":"2024-05-01T12:34:56.123456789Z",
     "Path":"eks-terraform-state-123/vpc/terraform.tfstate"}

The same table also holds "<path>-md5" digest items (no Info, a Digest
attribute instead). Those are state checksums, not locks.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

CREATED_PATTERN = re.compile(r'"Created"\s*:\s*"([^"]*)"')
_FRACTION_PATTERN = re.compile(r"\.(\d+)")
_COMPACT_OFFSET_PATTERN = re.compile(r"(?<=\d)([+-]\d{2})(\d{2})$")


def parse_created_timestamp(info: Optional[str]) -> Optional[datetime]:
    """
    Extract the creation time from lock metadata text.

    Returns an aware UTC datetime, or None when the field is missing
    or cannot be parsed.
    """
    if not info:
        return None
    match = CREATED_PATTERN.search(info)
    if not match:
        return None

    raw = match.group(1).strip()
    if not raw:
        return None
    if raw[-1] in "Zz":
        raw = raw[:-1] + "+00:00"
    # Terraform writes nanoseconds; datetime only holds microseconds
    raw = _FRACTION_PATTERN.sub(lambda m: "." + (m.group(1) + "000000")[:6], raw, count=1)
    # fromisoformat on 3.10 needs a colon in the offset
    raw = _COMPACT_OFFSET_PATTERN.sub(r"\1:\2", raw)

    try:
        created = datetime.fromisoformat(raw)
    except ValueError:
        return None

    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created.astimezone(timezone.utc)


def _parse_holder(info: Optional[str]) -> dict[str, Any]:
    if not info:
        return {}
    try:
        data = json.loads(info)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


@dataclass(frozen=True)
class LockEntry:
    """
    One item of the lock table.

    Attributes:
        lock_id: Key of the item (the locked state path)
        info: Raw metadata text as stored, None if the item has none
        holder: Parsed metadata (ID, Operation, Who, Version, Path); empty if unparsable
        created_at: Creation time parsed from metadata; None means age unknown
        is_digest: True for Terraform "-md5" checksum items
    """
    lock_id: str
    info: Optional[str] = None
    holder: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    is_digest: bool = False

    @classmethod
    def from_info(cls, lock_id: str, info: Optional[str], is_digest: bool = False) -> "LockEntry":
        return cls(
            lock_id=lock_id,
            info=info,
            holder=_parse_holder(info),
            created_at=parse_created_timestamp(info),
            is_digest=is_digest,
        )

    def age_seconds(self, now: datetime) -> Optional[float]:
        """Age relative to now, None if the creation time is unknown."""
        if self.created_at is None:
            return None
        return (now - self.created_at).total_seconds()

    @property
    def who(self) -> Optional[str]:
        return self.holder.get("Who")

    @property
    def operation(self) -> Optional[str]:
        return self.holder.get("Operation")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"lock_id": self.lock_id}
        if self.info is not None:
            result["info"] = self.info
        if self.created_at is not None:
            result["created_at"] = self.created_at.isoformat()
        if self.is_digest:
            result["is_digest"] = True
        return result
