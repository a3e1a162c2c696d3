"""
Tests for native OS input. pyautogui itself is replaced by a mock.
"""

from unittest.mock import MagicMock, call

import pytest
from PIL import Image

from deskprobe.core.adapters.native import NativeInput, map_key
from deskprobe.core.config import NativeConfig


def _native(**config) -> tuple[NativeInput, MagicMock]:
    backend = NativeInput(NativeConfig(**config))
    gui = MagicMock()
    gui.size.return_value = (2560, 1440)
    gui.screenshot.return_value = Image.new("RGB", (4, 4), "white")
    backend._gui = gui
    return backend, gui


@pytest.mark.parametrize(
    "key, expected",
    [
        ("Control", "ctrl"),
        ("Enter", "enter"),
        ("ArrowDown", "down"),
        ("Escape", "esc"),
        ("F5", "f5"),
        ("a", "a"),
        ("A", "A"),
    ],
)
def test_map_key(key: str, expected: str) -> None:
    assert map_key(key) == expected


class TestNativeInput:
    """Tests for NativeInput."""

    @pytest.mark.asyncio
    async def test_disabled_is_unavailable(self):
        backend = NativeInput(NativeConfig(enabled=False))

        result = await backend.initialize()

        assert result.ok is False
        assert backend.is_available() is False

    def test_uninitialized_gui_raises(self):
        with pytest.raises(RuntimeError):
            NativeInput().gui

    @pytest.mark.asyncio
    async def test_click_rounds_coordinates(self):
        backend, gui = _native()

        await backend.click_at(100.4, 49.6, button="right")

        gui.click.assert_called_once_with(x=100, y=50, clicks=1, interval=0.0, button="right")

    @pytest.mark.asyncio
    async def test_double_click_uses_interval(self):
        backend, gui = _native(click_interval_s=0.1)

        await backend.click_at(1, 2, count=2)

        assert gui.click.call_args.kwargs["interval"] == 0.1

    @pytest.mark.asyncio
    async def test_press_single_and_combo(self):
        backend, gui = _native()

        await backend.press_key("Enter")
        await backend.press_key("s", ("Control", "Shift"))

        gui.press.assert_called_once_with("enter")
        gui.hotkey.assert_called_once_with("ctrl", "shift", "s")

    @pytest.mark.asyncio
    async def test_type_text(self):
        backend, gui = _native()

        await backend.type_text("hello", delay_ms=20)

        gui.write.assert_called_once_with("hello", interval=0.02)

    @pytest.mark.asyncio
    async def test_drag(self):
        backend, gui = _native()

        await backend.drag_between((10, 20), (30, 40))

        assert gui.method_calls[:4] == [
            call.moveTo(10, 20),
            call.mouseDown(),
            call.moveTo(30, 40, duration=0.2),
            call.mouseUp(),
        ]

    @pytest.mark.asyncio
    async def test_scroll_converts_pixels_to_notches(self):
        backend, gui = _native(scroll_step_px=100)

        await backend.scroll(0, 300, 50, 60)
        await backend.scroll(-40, 0)

        gui.scroll.assert_called_once_with(-3, x=50, y=60)
        gui.hscroll.assert_called_once_with(-1, x=None, y=None)

    @pytest.mark.asyncio
    async def test_screenshot_and_size(self):
        backend, gui = _native()

        encoded = await backend.screenshot_base64()

        assert encoded.startswith("/9j/")
        assert await backend.get_screen_size() == (2560, 1440)

    @pytest.mark.asyncio
    async def test_cleanup(self):
        backend, _ = _native()

        await backend.cleanup()

        assert backend.is_available() is False
