"""Registry of live agent CLI processes keyed by session identity."""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Maps session identities to live process handles.

    Each entry has one canonical key plus any number of aliases left
    behind by ``rekey()``, so a lookup by an earlier key (placeholder or
    generated id) keeps resolving until the entry is removed.

    Not thread-safe: every mutation happens on the event loop that owns
    the supervisor.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self._aliases: dict[str, str] = {}

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.resolve(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        """Canonical keys of all live entries, in insertion order."""
        return list(self._entries)

    def resolve(self, key: str) -> str | None:
        """Return the canonical key for *key*, following aliases."""
        if key in self._entries:
            return key
        target = self._aliases.get(key)
        if target is not None and target in self._entries:
            return target
        return None

    def get(self, key: str) -> Any | None:
        canonical = self.resolve(key)
        return None if canonical is None else self._entries[canonical]

    def add(self, key: str, process: Any) -> None:
        if key in self._entries and self._entries[key] is not process:
            logger.warning("replacing active process registered as %s", key)
            self._drop_aliases(key)
        self._aliases.pop(key, None)
        self._entries[key] = process

    def rekey(self, old: str, new: str) -> bool:
        """Move the entry under *old* to *new*, keeping *old* as an alias.

        Returns False when nothing is registered under *old*.
        """
        canonical = self.resolve(old)
        if canonical is None:
            return False
        if canonical == new:
            return True
        process = self._entries.pop(canonical)
        if new in self._entries:
            logger.warning("replacing active process registered as %s", new)
            self._drop_aliases(new)
        self._entries[new] = process
        self._aliases.pop(new, None)
        for alias, target in self._aliases.items():
            if target == canonical:
                self._aliases[alias] = new
        self._aliases[canonical] = new
        return True

    def remove(self, key: str, process: Any | None = None) -> Any | None:
        """Remove the entry reachable by *key* and all of its aliases.

        When *process* is given the entry is only removed if it still
        holds that exact handle.  Returns the removed handle, if any.
        """
        canonical = self.resolve(key)
        if canonical is None:
            return None
        current = self._entries[canonical]
        if process is not None and current is not process:
            return None
        del self._entries[canonical]
        self._drop_aliases(canonical)
        return current

    def _drop_aliases(self, canonical: str) -> None:
        stale = [a for a, target in self._aliases.items() if target == canonical]
        for alias in stale:
            del self._aliases[alias]
