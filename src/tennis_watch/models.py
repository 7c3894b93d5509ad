"""Shared data models used across the availability watcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError


@dataclass(frozen=True)
class Facility:
    """A monitored venue, recognised on pages by name substrings."""

    key: str
    name_patterns: tuple[str, ...]

    def __post_init__(self) -> None:
        patterns = tuple(pattern for pattern in self.name_patterns if pattern and pattern.strip())
        if not patterns:
            raise ConfigurationError(f"Facility {self.key!r} needs at least one name pattern")
        object.__setattr__(self, "name_patterns", patterns)

    def matches(self, text: str) -> bool:
        """Return True when any name pattern occurs in ``text``."""
        return any(pattern in text for pattern in self.name_patterns)


def match_facility(text: str, facilities: tuple[Facility, ...]) -> Optional[Facility]:
    """Return the first configured facility whose name appears in ``text``."""
    for facility in facilities:
        if facility.matches(text):
            return facility
    return None


@dataclass(frozen=True)
class SlotRecord:
    """A single open (date, court, time) combination."""

    facility: str
    date: str
    court: str
    time: str
    raw_marker: str = field(default="", compare=False)
    raw_line: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.raw_line is not None

    @property
    def dedupe_key(self) -> tuple[str, ...]:
        if self.raw_line is not None:
            return (self.facility, self.raw_line)
        return (self.facility, self.date, self.court, self.time)


@dataclass
class ScanResult:
    """Outcome of one run, consumed by the notifier."""

    slots: tuple[SlotRecord, ...]
    reached_url: str
    diagnostics: dict[str, Path] = field(default_factory=dict)
    facilities_scanned: tuple[str, ...] = ()
    facilities_skipped: tuple[str, ...] = ()

    @property
    def has_slots(self) -> bool:
        return bool(self.slots)
