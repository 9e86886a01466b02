"""
Interval registry: per-identity throttle state shared across requests.

Each identity maps to the minimum spacing its requests must keep and the time
the last request of that identity completed. Entries registered without a
timestamp are stamped with "now" on first use, so a process restart never
lets a burst slip past an interval that was being observed before it.
"""

import copy
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from shared.config import get_settings
from shared.errors import ConfigurationError
from shared.logging import get_logger


class IntervalEntry(BaseModel):
    """Throttle state for one identity."""

    model_config = {"validate_assignment": True}

    required_interval_ms: float = Field(ge=0)
    last_completion: Optional[float] = None  # epoch seconds


EntryLike = Union[IntervalEntry, Mapping[str, Any]]


def _coerce_entry(identity: str, value: EntryLike) -> IntervalEntry:
    if isinstance(value, IntervalEntry):
        return value.model_copy()
    try:
        return IntervalEntry.model_validate(dict(value))
    except (ValidationError, TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid interval entry for '{identity}'",
            details={"identity": identity, "error": str(e)}
        )


class IntervalRegistry:
    """Mapping from request identity to its interval entry."""

    def __init__(self, entries: Optional[Mapping[str, EntryLike]] = None):
        self._entries: Dict[str, IntervalEntry] = {}
        self._lock = threading.Lock()
        self.logger = get_logger("advanced_request.registry")
        if entries:
            self.merge(entries)

    def get(self, identity: str) -> Optional[IntervalEntry]:
        """Get the live entry for an identity, or None."""
        with self._lock:
            return self._entries.get(identity)

    def set_all(self, entries: Mapping[str, EntryLike]) -> None:
        """Replace the whole table."""
        coerced = {identity: _coerce_entry(identity, value) for identity, value in entries.items()}
        with self._lock:
            self._entries = coerced
        self.logger.info("Interval registry replaced", identities=sorted(coerced))

    def merge(self, entries: Mapping[str, EntryLike]) -> None:
        """Add or overwrite entries."""
        coerced = {identity: _coerce_entry(identity, value) for identity, value in entries.items()}
        with self._lock:
            self._entries.update(coerced)
        self.logger.debug("Interval entries merged", identities=sorted(coerced))

    def register(self, identity: str, required_interval_ms: float,
                 last_completion: Optional[float] = None) -> IntervalEntry:
        """Add or overwrite a single identity."""
        entry = _coerce_entry(identity, {
            "required_interval_ms": required_interval_ms,
            "last_completion": last_completion,
        })
        with self._lock:
            self._entries[identity] = entry
        return entry

    def remove(self, identities: Iterable[str]) -> None:
        """Delete entries; identities that are not registered are ignored."""
        with self._lock:
            for identity in identities:
                self._entries.pop(identity, None)

    def ensure_started(self, identity: str, now: float) -> bool:
        """Stamp a missing timestamp with ``now``. Returns True when it did."""
        with self._lock:
            entry = self._entries.get(identity)
            if entry is None or entry.last_completion is not None:
                return False
            entry.last_completion = now
            return True

    def mark_completed(self, identity: str, when: float) -> bool:
        """Record a completion time. Timestamps never move backwards.

        Returns False when the identity is not registered.
        """
        with self._lock:
            entry = self._entries.get(identity)
            if entry is None:
                return False
            if entry.last_completion is None or when > entry.last_completion:
                entry.last_completion = when
            return True

    def snapshot(self) -> Dict[str, IntervalEntry]:
        """Deep copy of the table."""
        with self._lock:
            return copy.deepcopy(self._entries)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def load_intervals_file(path: Union[str, Path]) -> Dict[str, IntervalEntry]:
    """Load interval entries from a YAML mapping.

    Example file::

        WebAPIfollowCMD:
          required_interval_ms: 10000
        WebAPIunfollowCMD:
          required_interval_ms: 600000
    """
    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in intervals file {path}", details={"error": str(e)})
    except OSError as e:
        raise ConfigurationError(f"Error reading intervals file {path}", details={"error": str(e)})

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Intervals file {path} must contain a mapping of identity to entry",
            details={"type": type(raw).__name__}
        )

    return {str(identity): _coerce_entry(str(identity), value or {}) for identity, value in raw.items()}


# Process-wide registry shared by every request that is not given its own
_default_registry: Optional[IntervalRegistry] = None
_default_lock = threading.Lock()


def get_default_registry() -> IntervalRegistry:
    """Get the shared registry, seeding it from the configured intervals file."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            registry = IntervalRegistry()
            intervals_file = get_settings().intervals_file
            if intervals_file:
                registry.merge(load_intervals_file(intervals_file))
            _default_registry = registry
        return _default_registry


def set_intervals(entries: Mapping[str, EntryLike]) -> None:
    """Replace the shared registry's contents."""
    get_default_registry().set_all(entries)


def add_intervals(entries: Mapping[str, EntryLike]) -> None:
    """Merge entries into the shared registry."""
    get_default_registry().merge(entries)


def remove_intervals(identities: Iterable[str]) -> None:
    """Remove identities from the shared registry."""
    get_default_registry().remove(identities)
