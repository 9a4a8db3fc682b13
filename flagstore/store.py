"""In-memory flag store that merges flag definitions from prioritised sources."""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

Metadata = dict[str, Any]


class NotificationType(str, Enum):
    """Kind of change a notification reports."""

    CREATE = "write"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class Flag:
    """A single feature flag definition."""

    state: str = ""
    default_variant: str = ""
    variants: dict[str, Any] = field(default_factory=dict)
    targeting: Any = None
    source: str = ""
    selector: str = ""
    metadata: Metadata = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation of the flag."""
        data: dict[str, Any] = {
            "state": self.state,
            "defaultVariant": self.default_variant,
            "variants": self.variants,
        }
        if self.targeting is not None:
            data["targeting"] = self.targeting
        data["source"] = self.source
        data["selector"] = self.selector
        if self.metadata:
            data["metadata"] = self.metadata
        return data


@dataclass
class SourceDetails:
    """Where a set of flags came from."""

    source: str = ""
    selector: str = ""


def _notification(kind: NotificationType, source: str) -> dict[str, str]:
    return {"type": kind.value, "source": source}


@dataclass
class State:
    """Thread-safe collection of flags keyed by flag name.

    ``flag_sources`` lists sources in ascending priority: later entries win.
    """

    flags: dict[str, Flag] = field(default_factory=dict)
    flag_sources: list[str] = field(default_factory=list)
    source_details: dict[str, SourceDetails] = field(default_factory=dict)
    metadata_per_source: dict[str, Metadata] = field(default_factory=dict)
    _lock: threading.RLock = field(
        default_factory=threading.RLock, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.flags is None:
            self.flags = {}
        if self.flag_sources is None:
            self.flag_sources = []
        if self.source_details is None:
            self.source_details = {}
        if self.metadata_per_source is None:
            self.metadata_per_source = {}

    def has_priority(self, stored: str, new: str) -> bool:
        """Tell whether source ``new`` may overwrite a flag owned by ``stored``."""
        if stored == new:
            return True
        for source in reversed(self.flag_sources):
            if source == stored:
                return False
            if source == new:
                return True
        return True

    def set(self, key: str, flag: Flag) -> None:
        with self._lock:
            self.flags[key] = flag

    def get(self, key: str) -> tuple[Optional[Flag], Metadata]:
        """Return the flag (or None) and the metadata that applies to it.

        For a missing flag the metadata shared by all sources is returned.
        """
        with self._lock:
            flag = self.flags.get(key)
            if flag is None:
                return None, self._merged_metadata()
            return flag, self.get_metadata_for_source(flag.source)

    def selector_for_flag(self, flag: Flag) -> str:
        with self._lock:
            details = self.source_details.get(flag.source)
            return details.selector if details is not None else ""

    def delete(self, key: str) -> None:
        with self._lock:
            self.flags.pop(key, None)

    def to_json(self) -> str:
        """Serialise the store to a JSON string."""
        with self._lock:
            data: dict[str, Any] = {
                "flags": {key: flag.to_dict() for key, flag in self.flags.items()},
                "FlagSources": list(self.flag_sources),
            }
            if self.source_details:
                data["sourceMetadata"] = {
                    name: {"Source": d.source, "Selector": d.selector}
                    for name, d in self.source_details.items()
                }
            if self.metadata_per_source:
                data["metadata"] = self.metadata_per_source
            try:
                return json.dumps(data, separators=(",", ":"))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"unable to marshal flags: {exc}") from exc

    def get_all(self) -> tuple[dict[str, Flag], Metadata]:
        """Return a copy of all flags and the metadata shared by all sources."""
        with self._lock:
            return dict(self.flags), self._merged_metadata()

    def add(self, source: str, selector: str, flags: Mapping[str, Flag] | None) -> dict[str, Any]:
        """Add flags from ``source``; returns notifications keyed by flag name."""
        notifications: dict[str, Any] = {}
        for key, new_flag in (flags or {}).items():
            stored, _ = self.get(key)
            if stored is not None and not self.has_priority(stored.source, source):
                logger.debug(
                    "not overwriting: flag %s from source %s does not have priority over %s",
                    key, source, stored.source,
                )
                continue
            notifications[key] = _notification(NotificationType.CREATE, source)
            self.set(key, dataclasses.replace(new_flag, source=source, selector=selector))
        return notifications

    def update(self, source: str, selector: str, flags: Mapping[str, Flag] | None) -> dict[str, Any]:
        """Update existing flags from ``source``; unknown flags are skipped."""
        notifications: dict[str, Any] = {}
        for key, flag in (flags or {}).items():
            stored, _ = self.get(key)
            if stored is None:
                logger.warning(
                    "failed to update the flag, flag with key %s from source %s does not exist.",
                    key, source,
                )
                continue
            if not self.has_priority(stored.source, source):
                logger.debug(
                    "not updating: flag %s from source %s does not have priority over %s",
                    key, source, stored.source,
                )
                continue
            notifications[key] = _notification(NotificationType.UPDATE, source)
            self.set(key, dataclasses.replace(flag, source=source, selector=selector))
        return notifications

    def delete_flags(self, source: str, flags: Mapping[str, Flag] | None) -> dict[str, Any]:
        """Delete the given flags, or every flag of ``source`` when none are given."""
        logger.debug("store resync triggered: delete event from source %s", source)
        with self._lock:
            self.metadata_per_source.pop(source, None)

        notifications: dict[str, Any] = {}
        if not flags:
            all_flags, _ = self.get_all()
            for key, flag in all_flags.items():
                if flag.source != source:
                    continue
                notifications[key] = _notification(NotificationType.DELETE, source)
                self.delete(key)
            return notifications

        for key in flags:
            stored, _ = self.get(key)
            if stored is None:
                logger.warning(
                    "failed to remove flag, flag with key %s from source %s does not exist.",
                    key, source,
                )
                continue
            if not self.has_priority(stored.source, source):
                logger.debug(
                    "not deleting: flag %s from source %s cannot be deleted by %s",
                    key, stored.source, source,
                )
                continue
            notifications[key] = _notification(NotificationType.DELETE, source)
            self.delete(key)
        return notifications

    def merge(
        self,
        source: str,
        selector: str,
        flags: Mapping[str, Flag] | None,
        metadata: Metadata | None,
    ) -> tuple[dict[str, Any], bool]:
        """Merge a full snapshot from ``source`` into the store.

        Returns the notifications and whether a resync is required because
        flags were removed from the snapshot.
        """
        flags = flags or {}
        notifications: dict[str, Any] = {}
        resync_required = False
        with self._lock:
            self.metadata_per_source[source] = metadata if metadata is not None else {}
            for key, stored in list(self.flags.items()):
                if stored.source == source and stored.selector == selector and key not in flags:
                    del self.flags[key]
                    notifications[key] = _notification(NotificationType.DELETE, source)
                    resync_required = True
                    logger.debug(
                        "store resync triggered: flag %s has been deleted from source %s",
                        key, source,
                    )

        for key, flag in flags.items():
            new_flag = dataclasses.replace(flag, source=source, selector=selector)
            stored, _ = self.get(key)
            if stored is not None:
                if not self.has_priority(stored.source, source):
                    logger.debug(
                        "not merging: flag %s from source %s does not have priority over %s",
                        key, source, stored.source,
                    )
                    continue
                if stored == new_flag:
                    continue
                notifications[key] = _notification(NotificationType.UPDATE, source)
            else:
                notifications[key] = _notification(NotificationType.CREATE, source)
            self.set(key, new_flag)
        return notifications, resync_required

    def get_metadata_for_source(self, source: str) -> Metadata:
        """Return a copy of the metadata registered for ``source``."""
        with self._lock:
            per_source = self.metadata_per_source.get(source)
            return dict(per_source) if per_source else {}

    def _merged_metadata(self) -> Metadata:
        """Metadata from all sources; keys present in several sources are dropped."""
        counts = Counter(
            key for per_source in self.metadata_per_source.values() for key in (per_source or {})
        )
        merged: Metadata = {}
        for per_source in self.metadata_per_source.values():
            for key, value in (per_source or {}).items():
                if counts[key] == 1:
                    merged[key] = value
        return merged