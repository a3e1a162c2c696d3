"""
Snapshot/ref cache.

A snapshot numbers the current interactive elements ``e1..eN`` in document
order so tests (and agents) can address them as ``@e1``. Exactly one
snapshot is current at a time; taking a new one replaces it wholesale.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import replace
from types import MappingProxyType
from typing import Optional

from deskprobe.core.adapters.base import StructuralBackend
from deskprobe.core.contracts import ElementHandle, Snapshot
from deskprobe.core.errors import BackendUnavailableError

logger = logging.getLogger("deskprobe.engine")


def format_tree(handles: list[ElementHandle]) -> str:
    """Render elements one per line, e.g. ``- button "Save" [ref=e1]``."""
    lines = []
    for handle in handles:
        name = f' "{handle.name}"' if handle.name else ""
        nth = f" [nth={handle.nth}]" if handle.nth is not None else ""
        lines.append(f"- {handle.role}{name} [ref={handle.id}]{nth}")
    return "\n".join(lines)


class RefCache:
    """Owns the current snapshot and resolves ``@eN`` refs against it."""

    def __init__(self, backend: Optional[StructuralBackend] = None) -> None:
        self._backend = backend
        self._current: Optional[Snapshot] = None
        self._counter = 0

    @property
    def current(self) -> Optional[Snapshot]:
        return self._current

    def attach(self, backend: Optional[StructuralBackend]) -> None:
        self._backend = backend
        self.invalidate()

    def _structural(self) -> Optional[StructuralBackend]:
        if self._backend is not None and self._backend.is_available():
            return self._backend
        return None

    async def snapshot(self, interactive: bool = True, include_screenshot: bool = False) -> Snapshot:
        """
        Capture the current elements and make them the authoritative snapshot.

        Args:
            interactive: Only include interactive elements
            include_screenshot: Also attach a base64 screenshot

        Returns:
            The new current Snapshot
        """
        backend = self._structural()
        if backend is None:
            raise BackendUnavailableError("Snapshots require a structural backend")

        elements = await backend.get_snapshot(interactive=interactive)

        pair_totals = Counter((element.role, element.name) for element in elements)
        pair_seen: Counter = Counter()
        handles: list[ElementHandle] = []
        for index, element in enumerate(elements, start=1):
            pair = (element.role, element.name)
            nth = pair_seen[pair] if pair_totals[pair] > 1 else None
            pair_seen[pair] += 1
            handles.append(replace(element, id=f"e{index}", nth=nth))

        screenshot = await backend.screenshot_base64() if include_screenshot else None

        self._counter += 1
        snapshot = Snapshot(
            snapshot_id=f"snapshot-{self._counter}",
            timestamp=time.time(),
            tree=format_tree(handles),
            refs=MappingProxyType({handle.id: handle for handle in handles}),
            screenshot=screenshot,
        )
        self._current = snapshot
        logger.debug(f"[Engine] {snapshot.snapshot_id}: {len(handles)} refs")
        return snapshot

    async def resolve_ref(self, ref: str) -> Optional[ElementHandle]:
        """
        Look up a ref such as ``@e3`` or ``e3``.

        Takes a fresh snapshot when none is current or the ref is missing
        from the current one (the UI may have grown since). Returns None when
        the ref is still absent, the snapshot fails, or no structural backend
        is available.
        """
        key = ref[1:] if ref.startswith("@") else ref
        if self._current is not None:
            handle = self._current.refs.get(key)
            if handle is not None:
                return handle

        if self._structural() is None:
            return None
        try:
            snapshot = await self.snapshot()
        except Exception as exc:
            logger.warning(f"[Engine] Snapshot for {ref} failed: {exc}")
            return None
        return snapshot.refs.get(key)

    def invalidate(self) -> None:
        self._current = None

    def find_by_role(self, role: str) -> list[ElementHandle]:
        if self._current is None:
            return []
        return [handle for handle in self._current.refs.values() if handle.role == role]

    def find_by_name(self, name: str) -> list[ElementHandle]:
        if self._current is None:
            return []
        needle = name.lower()
        return [handle for handle in self._current.refs.values() if needle in handle.name.lower()]

    def to_text(self, max_elements: int = 100) -> str:
        if self._current is None:
            return "No snapshot available. Call snapshot() first."
        handles = list(self._current.refs.values())
        lines = [f"Elements ({len(handles)}):"]
        for handle in handles[:max_elements]:
            name = f' "{handle.name}"' if handle.name else ""
            lines.append(f"  @{handle.id} {handle.role}{name}")
        if len(handles) > max_elements:
            lines.append(f"  ... and {len(handles) - max_elements} more")
        return "\n".join(lines)
