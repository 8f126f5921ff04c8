"""
Scan Cursor

Resumption state for one scan target. The watermark is the authoritative
"everything up to here has been delivered" marker and only moves forward;
the recently-seen set is a same-run shortcut that stops a signature from
being handled twice while the watermark catches up.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Watermark:
    """Last fully processed ledger position."""
    slot: int                         # Slot of the last processed item
    signature: Optional[str] = None   # Its signature (None for slot-ranged scans)

    def __str__(self) -> str:
        if self.signature:
            return f"{self.slot}/{self.signature[:8]}..."
        return str(self.slot)

    def to_dict(self) -> Dict[str, Any]:
        return {"slot": self.slot, "signature": self.signature}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Watermark":
        return cls(slot=int(data["slot"]), signature=data.get("signature"))


class ScanCursor:
    """
    Watermark plus a bounded set of recently processed signatures.

    A cursor without a watermark has not been positioned yet; the engine asks
    its fetch strategy for a starting point in that case.
    """

    def __init__(self, watermark: Optional[Watermark] = None, recent_capacity: int = 1024):
        if recent_capacity < 1:
            raise ValueError("recent_capacity must be positive")
        self._watermark = watermark
        self.recent_capacity = recent_capacity
        self._recent: "OrderedDict[str, int]" = OrderedDict()   # signature -> slot

    @property
    def watermark(self) -> Optional[Watermark]:
        return self._watermark

    @property
    def recently_seen(self) -> Dict[str, int]:
        return dict(self._recent)

    def is_new(self, slot: int, signature: Optional[str] = None) -> bool:
        """
        True if the item at (slot, signature) has not been processed.

        Both kinds are new only past the watermark slot, since the engine never
        advances into the middle of a slot. Signed items processed earlier in
        this run are never new.
        """
        if signature is not None and signature in self._recent:
            return False
        mark = self._watermark
        if mark is None:
            return True
        return slot > mark.slot

    def mark_seen(self, signature: str, slot: int) -> None:
        self._recent[signature] = slot
        self._recent.move_to_end(signature)
        while len(self._recent) > self.recent_capacity:
            self._recent.popitem(last=False)

    def advance(self, watermark: Watermark) -> None:
        """
        Move the watermark forward and prune recently-seen entries behind it.

        Raises:
            ValueError: if `watermark` is behind the current one
        """
        current = self._watermark
        if current is not None and watermark.slot < current.slot:
            raise ValueError(f"Watermark cannot move backwards: {current} -> {watermark}")
        self._watermark = watermark
        for signature in [s for s, slot in self._recent.items() if slot < watermark.slot]:
            del self._recent[signature]


class CursorStore(ABC):
    """Somewhere to keep a watermark between runs."""

    @abstractmethod
    def load(self) -> Optional[Watermark]:
        """Stored watermark, or None if nothing was stored yet."""

    @abstractmethod
    def save(self, watermark: Watermark) -> None:
        """Persist `watermark`."""


class FileCursorStore(CursorStore):
    """
    Watermark kept in a small JSON file.

    Writes go to a temporary file first and replace the old one, so a crash
    mid-write leaves the previous watermark intact.
    """

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Optional[Watermark]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            return Watermark.from_dict(data["watermark"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Corrupt cursor file {self.path}: {exc}") from exc

    def save(self, watermark: Watermark) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, 'w') as f:
            json.dump({"watermark": watermark.to_dict()}, f, indent=2)
        os.replace(tmp, self.path)
        logger.debug("Cursor saved to %s at %s", self.path, watermark)
