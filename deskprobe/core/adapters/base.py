from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from deskprobe.core.contracts import (
    ClickOptions,
    ElementHandle,
    Locator,
    ScrollOptions,
    TypeOptions,
)


@dataclass(frozen=True)
class InitResult:
    ok: bool
    error: Optional[str] = None


class Backend(ABC):
    """Common lifecycle for every backend."""

    name: str = "backend"

    @abstractmethod
    async def initialize(self) -> InitResult:
        """Prepare the backend. Must not raise; failures are reported in the result."""

    @abstractmethod
    async def cleanup(self) -> None:
        ...

    @abstractmethod
    def is_available(self) -> bool:
        ...


class StructuralBackend(Backend):
    """Backend that addresses elements through the app's own UI tree."""

    name = "structural"

    @abstractmethod
    async def get_snapshot(self, interactive: bool = True) -> list[ElementHandle]:
        """Return the current elements in document order."""

    @abstractmethod
    async def find(self, locator: Locator) -> Optional[ElementHandle]:
        ...

    @abstractmethod
    async def find_all(self, locator: Locator) -> list[ElementHandle]:
        ...

    @abstractmethod
    async def click(self, handle: ElementHandle, options: ClickOptions) -> None:
        ...

    @abstractmethod
    async def type(self, handle: Optional[ElementHandle], text: str, options: TypeOptions) -> None:
        ...

    @abstractmethod
    async def press(self, key: str) -> None:
        ...

    @abstractmethod
    async def hover(self, handle: ElementHandle) -> None:
        ...

    @abstractmethod
    async def scroll(self, handle: Optional[ElementHandle], options: ScrollOptions) -> None:
        ...

    @abstractmethod
    async def drag(self, source: ElementHandle, target: ElementHandle) -> None:
        ...

    @abstractmethod
    async def screenshot_base64(self) -> str:
        ...

    async def get_text(self, handle: ElementHandle) -> str:
        raise NotImplementedError

    async def get_value(self, handle: ElementHandle) -> str:
        raise NotImplementedError

    async def get_attribute(self, handle: ElementHandle, name: str) -> Optional[str]:
        raise NotImplementedError

    async def is_visible(self, handle: ElementHandle) -> bool:
        raise NotImplementedError

    async def is_enabled(self, handle: ElementHandle) -> bool:
        raise NotImplementedError

    async def get_bounding_box(self, handle: ElementHandle) -> Optional[dict[str, float]]:
        raise NotImplementedError

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        raise NotImplementedError

    async def get_url(self) -> str:
        raise NotImplementedError

    async def get_title(self) -> str:
        raise NotImplementedError

    async def screenshot(self, path: Optional[str] = None, full_page: bool = False) -> bytes:
        raise NotImplementedError

    async def start_recording(self) -> None:
        raise NotImplementedError

    async def stop_recording(self, path: str) -> str:
        raise NotImplementedError

    async def wait_for_idle(self, timeout_ms: int = 30000) -> None:
        raise NotImplementedError

    async def connect(self) -> InitResult:
        return await self.initialize()

    async def disconnect(self) -> None:
        await self.cleanup()


class CoordinateBackend(Backend):
    """Backend that acts at screen coordinates (OS input or helper process)."""

    @abstractmethod
    async def click_at(self, x: float, y: float, button: str = "left", count: int = 1) -> None:
        ...

    @abstractmethod
    async def move_to(self, x: float, y: float) -> None:
        ...

    @abstractmethod
    async def drag_between(self, start: tuple[float, float], end: tuple[float, float]) -> None:
        ...

    @abstractmethod
    async def type_text(self, text: str, delay_ms: int = 0) -> None:
        ...

    @abstractmethod
    async def press_key(self, key: str, modifiers: tuple[str, ...] = ()) -> None:
        ...

    @abstractmethod
    async def scroll(
        self,
        dx: int,
        dy: int,
        x: Optional[float] = None,
        y: Optional[float] = None,
    ) -> None:
        ...

    @abstractmethod
    async def screenshot_base64(self) -> str:
        ...

    @abstractmethod
    async def get_screen_size(self) -> tuple[int, int]:
        ...


def split_key_combo(combo: str) -> tuple[str, tuple[str, ...]]:
    """
    Split a ``Mod+Mod+Key`` combination.

    Returns:
        (key, modifiers). A lone ``+`` is treated as the key itself.
    """
    if combo == "+" or "+" not in combo:
        return combo, ()
    if combo.endswith("++"):
        return "+", tuple(part for part in combo[:-2].split("+") if part)
    parts = combo.split("+")
    return parts[-1], tuple(part for part in parts[:-1] if part)


def scroll_delta(options: ScrollOptions) -> tuple[int, int]:
    """Convert a direction and amount into (dx, dy) wheel deltas."""
    amount = options.amount
    return {
        "up": (0, -amount),
        "down": (0, amount),
        "left": (-amount, 0),
        "right": (amount, 0),
    }.get(options.direction, (0, amount))
