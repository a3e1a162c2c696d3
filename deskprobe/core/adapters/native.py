"""
Native OS input through pyautogui.

pyautogui talks to the display server at import time, so it is imported
lazily in ``initialize``; on a headless host the backend simply reports
itself unavailable. All calls block, so they run in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Optional

from deskprobe.core.adapters.base import CoordinateBackend, InitResult
from deskprobe.core.config import NativeConfig
from deskprobe.core.vision.imaging import image_to_base64

logger = logging.getLogger("deskprobe.native")

_META_KEY = "command" if sys.platform == "darwin" else "win"

KEY_MAP: dict[str, str] = {
    "ctrl": "ctrl",
    "control": "ctrl",
    "cmd": _META_KEY,
    "command": _META_KEY,
    "meta": _META_KEY,
    "mod": "command" if sys.platform == "darwin" else "ctrl",
    "super": _META_KEY,
    "alt": "alt",
    "option": "alt",
    "shift": "shift",
    "enter": "enter",
    "return": "enter",
    "escape": "esc",
    "esc": "esc",
    "backspace": "backspace",
    "delete": "delete",
    "tab": "tab",
    "space": "space",
    " ": "space",
    "arrowup": "up",
    "arrowdown": "down",
    "arrowleft": "left",
    "arrowright": "right",
    "up": "up",
    "down": "down",
    "left": "left",
    "right": "right",
    "home": "home",
    "end": "end",
    "pageup": "pageup",
    "pagedown": "pagedown",
    "insert": "insert",
    **{f"f{n}": f"f{n}" for n in range(1, 13)},
}


def map_key(key: str) -> str:
    """Translate a Playwright-style key name to a pyautogui key name."""
    return KEY_MAP.get(key.lower(), key.lower() if len(key) > 1 else key)


class NativeInput(CoordinateBackend):
    """OS-level mouse and keyboard control."""

    name = "native"

    def __init__(self, config: Optional[NativeConfig] = None) -> None:
        self.config = config or NativeConfig()
        self._gui: Any = None

    async def initialize(self) -> InitResult:
        if self._gui is not None:
            return InitResult(ok=True)
        if not self.config.enabled:
            return InitResult(ok=False, error="Native input disabled")
        try:
            import pyautogui

            pyautogui.FAILSAFE = True
            pyautogui.PAUSE = 0
            await asyncio.to_thread(pyautogui.size)
        except Exception as exc:
            logger.warning(f"[Native] Native input unavailable: {exc}")
            return InitResult(ok=False, error=f"Native input unavailable: {exc}")

        self._gui = pyautogui
        logger.info("[Native] Native input ready")
        return InitResult(ok=True)

    async def cleanup(self) -> None:
        self._gui = None

    def is_available(self) -> bool:
        return self._gui is not None

    @property
    def gui(self) -> Any:
        if self._gui is None:
            raise RuntimeError("Native input not initialized")
        return self._gui

    async def click_at(self, x: float, y: float, button: str = "left", count: int = 1) -> None:
        logger.debug(f"[Native] click {button} x{count} at ({x:.0f}, {y:.0f})")
        await asyncio.to_thread(
            self.gui.click,
            x=round(x),
            y=round(y),
            clicks=count,
            interval=self.config.click_interval_s if count > 1 else 0.0,
            button=button,
        )

    async def move_to(self, x: float, y: float) -> None:
        await asyncio.to_thread(self.gui.moveTo, round(x), round(y))

    async def drag_between(self, start: tuple[float, float], end: tuple[float, float]) -> None:
        gui = self.gui

        def _drag() -> None:
            gui.moveTo(round(start[0]), round(start[1]))
            gui.mouseDown()
            gui.moveTo(round(end[0]), round(end[1]), duration=0.2)
            gui.mouseUp()

        await asyncio.to_thread(_drag)

    async def type_text(self, text: str, delay_ms: int = 0) -> None:
        interval = delay_ms / 1000 if delay_ms else self.config.type_interval_s
        await asyncio.to_thread(self.gui.write, text, interval=interval)

    async def press_key(self, key: str, modifiers: tuple[str, ...] = ()) -> None:
        keys = [map_key(modifier) for modifier in modifiers] + [map_key(key)]
        logger.debug(f"[Native] press {'+'.join(keys)}")
        if len(keys) == 1:
            await asyncio.to_thread(self.gui.press, keys[0])
        else:
            await asyncio.to_thread(self.gui.hotkey, *keys)

    async def scroll(
        self,
        dx: int,
        dy: int,
        x: Optional[float] = None,
        y: Optional[float] = None,
    ) -> None:
        gui = self.gui
        px = round(x) if x is not None else None
        py = round(y) if y is not None else None
        step = max(self.config.scroll_step_px, 1)

        def _notches(delta: int) -> int:
            if not delta:
                return 0
            count = max(1, round(abs(delta) / step))
            return count if delta > 0 else -count

        def _scroll() -> None:
            # pyautogui scrolls up for positive values; wheel deltas point down.
            if dy:
                gui.scroll(-_notches(dy), x=px, y=py)
            if dx:
                gui.hscroll(_notches(dx), x=px, y=py)

        await asyncio.to_thread(_scroll)

    async def screenshot_base64(self) -> str:
        image = await asyncio.to_thread(self.gui.screenshot)
        return image_to_base64(image, quality=self.config.jpeg_quality)

    async def get_screen_size(self) -> tuple[int, int]:
        width, height = await asyncio.to_thread(self.gui.size)
        return int(width), int(height)
