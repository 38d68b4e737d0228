"""Local draft slots for notes that are being composed.

Every note owns two encrypted slots in local storage:

``note_draft_{id}``
    Written on every edit (the primary slot).

``note_draft_recovery_{id}``
    Written only when the authoritative server save fails, so unsent work
    survives a reload.

:class:`DraftSlots` makes the pair explicit.  Each write stamps the record
with a version one higher than anything already stored for the note, which
lets callers tell which slot is newer.  Loading prefers the primary slot and
falls back to recovery; finalising or deleting the note clears both.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from mentalspace.client.secure_cache import SecureCache
from mentalspace.time_utils import Clock, isoformat, utc_now

logger = structlog.get_logger(__name__)

PRIMARY_PREFIX = "note_draft_"
RECOVERY_PREFIX = "note_draft_recovery_"


def primary_key(note_id: str) -> str:
    return f"{PRIMARY_PREFIX}{note_id}"


def recovery_key(note_id: str) -> str:
    return f"{RECOVERY_PREFIX}{note_id}"


class DraftState(str, enum.Enum):
    NO_DRAFT = "NO_DRAFT"
    DRAFT_SAVED = "DRAFT_SAVED"


@dataclass(frozen=True)
class DraftRecord:
    note_id: str
    structured_content: Any
    timestamp: str
    version: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "noteId": self.note_id,
            "structuredContent": self.structured_content,
            "timestamp": self.timestamp,
            "version": self.version,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, note_id: str, data: Any) -> Optional["DraftRecord"]:
        if not isinstance(data, dict) or data.get("structuredContent") is None:
            return None
        version = data.get("version")
        return cls(
            note_id=str(data.get("noteId") or note_id),
            structured_content=data["structuredContent"],
            timestamp=str(data.get("timestamp") or ""),
            version=version if isinstance(version, int) else 0,
            error=data.get("error"),
        )


@dataclass(frozen=True)
class DraftSnapshot:
    primary: Optional[DraftRecord]
    recovery: Optional[DraftRecord]

    @property
    def version(self) -> int:
        versions = [record.version for record in (self.primary, self.recovery) if record]
        return max(versions, default=0)

    @property
    def state(self) -> DraftState:
        if self.primary is None and self.recovery is None:
            return DraftState.NO_DRAFT
        return DraftState.DRAFT_SAVED


class DraftSlots:
    """Primary and recovery slots for a single note."""

    def __init__(self, cache: SecureCache, note_id: str, clock: Clock = utc_now) -> None:
        self.cache = cache
        self.note_id = str(note_id)
        self.clock = clock

    @property
    def primary_key(self) -> str:
        return primary_key(self.note_id)

    @property
    def recovery_key(self) -> str:
        return recovery_key(self.note_id)

    def _load(self, key: str) -> Optional[DraftRecord]:
        data = self.cache.secure_retrieve(key)
        if data is None:
            return None
        record = DraftRecord.from_dict(self.note_id, data)
        if record is None:
            # readable but not a draft record
            logger.warning("draft_entry_discarded", note_id=self.note_id, key=key)
            self.cache.remove(key)
        return record

    def read(self) -> DraftSnapshot:
        return DraftSnapshot(primary=self._load(self.primary_key), recovery=self._load(self.recovery_key))

    @property
    def version(self) -> int:
        return self.read().version

    @property
    def state(self) -> DraftState:
        return self.read().state

    def _write(self, key: str, structured_content: Any, error: Optional[str]) -> DraftRecord:
        record = DraftRecord(
            note_id=self.note_id,
            structured_content=structured_content,
            timestamp=isoformat(self.clock()) or "",
            version=self.version + 1,
            error=error,
        )
        self.cache.secure_store(key, record.to_dict())
        return record

    def write_primary(self, structured_content: Any) -> DraftRecord:
        return self._write(self.primary_key, structured_content, None)

    def write_recovery(self, structured_content: Any, error: Optional[str] = None) -> DraftRecord:
        record = self._write(self.recovery_key, structured_content, error)
        logger.info("draft_recovery_written", note_id=self.note_id, version=record.version)
        return record

    def clear(self) -> None:
        self.cache.remove(self.primary_key)
        self.cache.remove(self.recovery_key)

    def resolve(self) -> Optional[DraftRecord]:
        """Return the primary draft if readable, else the recovery draft."""

        primary = self._load(self.primary_key)
        if primary is not None:
            return primary
        return self._load(self.recovery_key)


__all__ = [
    "DraftRecord",
    "DraftSlots",
    "DraftSnapshot",
    "DraftState",
    "PRIMARY_PREFIX",
    "RECOVERY_PREFIX",
    "primary_key",
    "recovery_key",
]
