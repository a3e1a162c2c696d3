"""
Action dispatch across interchangeable backends.

Backend choice is re-evaluated for every action from live availability:

- Element actions on a handle with a bounding box go to a coordinate
  backend (native input first, then the helper process bridge).
- Element actions on a handle without a box go to the structural backend.
- Keyboard-only actions prefer native input, then the bridge, then the
  structural backend.

Failures never raise out of ``execute``; they come back as an ActionResult.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from typing import Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from deskprobe.core.adapters.base import (
    CoordinateBackend,
    StructuralBackend,
    scroll_delta,
    split_key_combo,
)
from deskprobe.core.contracts import (
    ActionResult,
    ActionSpec,
    ActionStatus,
    ActionType,
    ElementHandle,
)
from deskprobe.core.errors import BackendUnavailableError, BridgeTimeoutError

logger = logging.getLogger("deskprobe.engine")

SELECT_ALL_MODIFIER = "Meta" if sys.platform == "darwin" else "Control"

_TIMEOUT_ERRORS = (asyncio.TimeoutError, BridgeTimeoutError, PlaywrightTimeoutError)


class ActionDispatcher:
    """Runs resolved actions on whichever backend is available right now."""

    def __init__(
        self,
        structural: Optional[StructuralBackend] = None,
        native: Optional[CoordinateBackend] = None,
        bridge: Optional[CoordinateBackend] = None,
    ) -> None:
        self.structural = structural
        self.native = native
        self.bridge = bridge

    def coordinate_backend(self) -> Optional[CoordinateBackend]:
        for backend in (self.native, self.bridge):
            if backend is not None and backend.is_available():
                return backend
        return None

    def structural_backend(self) -> Optional[StructuralBackend]:
        if self.structural is not None and self.structural.is_available():
            return self.structural
        return None

    def _require_structural(self) -> StructuralBackend:
        backend = self.structural_backend()
        if backend is None:
            raise BackendUnavailableError("No backend available to perform the action")
        return backend

    def _coordinates_for(self, handle: Optional[ElementHandle]) -> Optional[CoordinateBackend]:
        if handle is None or handle.bounding_box is None:
            return None
        return self.coordinate_backend()

    async def execute(self, spec: ActionSpec) -> ActionResult:
        """
        Perform one action.

        Args:
            spec: Action type, parameters and resolved element(s)

        Returns:
            ActionResult with status, duration and the backend used
        """
        started = time.monotonic()
        used_vlm = any(
            handle is not None and handle.is_visual for handle in (spec.element, spec.destination)
        )
        try:
            backend_name = await self._perform(spec)
        except _TIMEOUT_ERRORS as exc:
            logger.warning(f"[Engine] {spec.action_type.value} timed out: {exc}")
            return ActionResult(
                status=ActionStatus.TIMEOUT,
                duration_ms=(time.monotonic() - started) * 1000,
                used_vlm=used_vlm,
                error=str(exc) or "Action timed out",
            )
        except Exception as exc:
            logger.warning(f"[Engine] {spec.action_type.value} failed: {exc}")
            return ActionResult(
                status=ActionStatus.FAILED,
                duration_ms=(time.monotonic() - started) * 1000,
                used_vlm=used_vlm,
                error=str(exc),
            )

        return ActionResult(
            status=ActionStatus.VLM_FALLBACK if used_vlm else ActionStatus.SUCCESS,
            duration_ms=(time.monotonic() - started) * 1000,
            used_vlm=used_vlm,
            backend=backend_name,
        )

    async def _perform(self, spec: ActionSpec) -> str:
        handlers = {
            ActionType.CLICK: self._click,
            ActionType.HOVER: self._hover,
            ActionType.DRAG: self._drag,
            ActionType.TYPE: self._type,
            ActionType.PRESS: self._press,
            ActionType.SCROLL: self._scroll,
        }
        return await handlers[spec.action_type](spec)

    async def _click(self, spec: ActionSpec) -> str:
        handle = _require(spec.element, "click")
        coordinates = self._coordinates_for(handle)
        if coordinates is not None:
            x, y = handle.bounding_box.center
            await coordinates.click_at(x, y, button=spec.click.button, count=spec.click.count)
            return coordinates.name
        structural = self._require_structural()
        await structural.click(handle, spec.click)
        return structural.name

    async def _hover(self, spec: ActionSpec) -> str:
        handle = _require(spec.element, "hover")
        coordinates = self._coordinates_for(handle)
        if coordinates is not None:
            await coordinates.move_to(*handle.bounding_box.center)
            return coordinates.name
        structural = self._require_structural()
        await structural.hover(handle)
        return structural.name

    async def _drag(self, spec: ActionSpec) -> str:
        source = _require(spec.element, "drag")
        destination = _require(spec.destination, "drag")
        if source.bounding_box is not None and destination.bounding_box is not None:
            coordinates = self.coordinate_backend()
            if coordinates is not None:
                await coordinates.drag_between(source.bounding_box.center, destination.bounding_box.center)
                return coordinates.name
        structural = self._require_structural()
        await structural.drag(source, destination)
        return structural.name

    async def _type(self, spec: ActionSpec) -> str:
        text = spec.text or ""
        options = spec.type_options
        handle = spec.element

        if handle is not None and handle.bounding_box is None:
            structural = self._require_structural()
            await structural.type(handle, text, options)
            return structural.name

        coordinates = self.coordinate_backend()
        if coordinates is not None:
            if handle is not None:
                await coordinates.click_at(*handle.bounding_box.center)
            if options.clear:
                await coordinates.press_key("a", (SELECT_ALL_MODIFIER,))
                await coordinates.press_key("Backspace")
            await coordinates.type_text(text, delay_ms=options.delay_ms)
            if options.submit:
                await coordinates.press_key("Enter")
            return coordinates.name

        structural = self._require_structural()
        await structural.type(handle, text, options)
        return structural.name

    async def _press(self, spec: ActionSpec) -> str:
        combo = spec.key or ""
        if not combo:
            raise ValueError("press requires a key")
        coordinates = self.coordinate_backend()
        if coordinates is not None:
            key, modifiers = split_key_combo(combo)
            await coordinates.press_key(key, modifiers)
            return coordinates.name
        structural = self._require_structural()
        await structural.press(combo)
        return structural.name

    async def _scroll(self, spec: ActionSpec) -> str:
        handle = spec.element
        if handle is not None and handle.bounding_box is None:
            structural = self._require_structural()
            await structural.scroll(handle, spec.scroll)
            return structural.name

        coordinates = self.coordinate_backend()
        if coordinates is not None:
            dx, dy = scroll_delta(spec.scroll)
            if handle is not None:
                x, y = handle.bounding_box.center
                await coordinates.scroll(dx, dy, x, y)
            else:
                await coordinates.scroll(dx, dy)
            return coordinates.name

        structural = self._require_structural()
        await structural.scroll(handle, spec.scroll)
        return structural.name


def _require(handle: Optional[ElementHandle], action: str) -> ElementHandle:
    if handle is None:
        raise ValueError(f"{action} requires an element")
    return handle
