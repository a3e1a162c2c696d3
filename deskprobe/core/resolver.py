"""
Tiered element resolution.

Resolution follows a strict cost waterfall:

Tier 1 (Ref): ``@eN`` lookups against the current snapshot - no round-trip
Tier 2 (Structural): selector/text/role/test-id queries - one backend query
Tier 3 (Visual): screenshot + vision model - paid, only when tiers 1-2 miss

The engine never raises for an element that cannot be found; it returns
None and lets the caller decide. ``wait_for`` is the single exception.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from deskprobe.core.adapters.base import StructuralBackend
from deskprobe.core.contracts import (
    BoundingBox,
    ElementHandle,
    ElementSource,
    FindRequest,
    Locator,
    LocatorStrategy,
    TestMode,
    WaitOptions,
)
from deskprobe.core.errors import ElementNotFoundError, ProviderError
from deskprobe.core.locator import LocatorLike, locator_to_description, normalize_locator
from deskprobe.core.snapshot import RefCache
from deskprobe.core.vision.base import VisualResolver

logger = logging.getLogger("deskprobe.engine")

ScreenshotSource = Callable[[], Awaitable[Optional[str]]]


class ResolutionEngine:
    """
    Resolves locators to element handles using the cheapest tier that works.

    Args:
        mode: Which tiers are enabled
        structural: Structural backend for tier 2 (and snapshots)
        refs: Snapshot/ref cache for tier 1
        visual: Visual resolver for tier 3
        capture_screenshot: Coroutine returning a base64 screenshot for tier 3
        default_timeout_ms: Timeout used by wait_for when none is given
        min_confidence: Visual hits below this confidence are discarded
    """

    def __init__(
        self,
        mode: TestMode = TestMode.HYBRID,
        structural: Optional[StructuralBackend] = None,
        refs: Optional[RefCache] = None,
        visual: Optional[VisualResolver] = None,
        capture_screenshot: Optional[ScreenshotSource] = None,
        default_timeout_ms: int = 30000,
        min_confidence: float = 0.0,
    ) -> None:
        self.mode = mode
        self.structural = structural
        self.refs = refs or RefCache(structural)
        self.visual = visual
        self._capture_screenshot = capture_screenshot
        self.default_timeout_ms = default_timeout_ms
        self.min_confidence = min_confidence
        self._visual_counter = 0

    def _structural(self) -> Optional[StructuralBackend]:
        if self.structural is not None and self.structural.is_available():
            return self.structural
        return None

    async def find(self, locator: LocatorLike) -> Optional[ElementHandle]:
        """
        Resolve a locator to a single element.

        Args:
            locator: Raw or normalized locator

        Returns:
            ElementHandle, or None when no enabled tier finds the element
        """
        locator = normalize_locator(locator)

        if self.mode != TestMode.VISUAL:
            handle = await self._find_deterministic(locator)
            if handle is not None:
                return handle

        if self.mode == TestMode.DETERMINISTIC or self.visual is None:
            return None

        return await self._find_visual(locator)

    async def _find_deterministic(self, locator: Locator) -> Optional[ElementHandle]:
        if locator.strategy == LocatorStrategy.REF:
            handle = await self.refs.resolve_ref(locator.value)
            if handle is not None:
                logger.debug(f"[Engine] Tier 1 hit: {locator.value}")
                return handle
            logger.debug(f"[Engine] Ref {locator.value} not in the snapshot, trying structural lookup")

        if locator.strategy == LocatorStrategy.VISUAL:
            return None

        structural = self._structural()
        if structural is None:
            return None
        try:
            handle = await structural.find(locator)
        except Exception as exc:
            logger.debug(f"[Engine] Structural query failed for {locator.value}: {exc}")
            return None
        if handle is not None:
            logger.debug(f"[Engine] Tier 2 hit: {locator.strategy.value}={locator.value}")
        return handle

    async def _find_visual(self, locator: Locator) -> Optional[ElementHandle]:
        assert self.visual is not None
        if self._capture_screenshot is None:
            logger.warning("[Engine] Visual tier enabled but no screenshot source is available")
            return None
        screenshot = await self._capture_screenshot()
        if not screenshot:
            return None

        description = locator_to_description(locator)
        logger.info(f"[Engine] Tier 3: asking vision model for {description}")
        try:
            response = await self.visual.find_element(FindRequest(screenshot=screenshot, description=description))
        except ProviderError as exc:
            logger.warning(f"[Engine] Vision model call failed: {exc}")
            return None

        if not response.found or response.coordinates is None:
            return None
        if response.confidence < self.min_confidence:
            logger.info(
                f"[Engine] Discarding visual hit for {description}: "
                f"confidence {response.confidence:.2f} < {self.min_confidence:.2f}"
            )
            return None

        x, y = response.coordinates
        self._visual_counter += 1
        return ElementHandle(
            id=f"vlm_{self._visual_counter}",
            role="visual",
            name=locator.value,
            source=ElementSource.VLM,
            bounding_box=BoundingBox(x=x - 0.5, y=y - 0.5, width=1, height=1),
        )

    async def find_all(self, locator: LocatorLike) -> list[ElementHandle]:
        """Resolve every structural match. Never uses the visual tier."""
        locator = normalize_locator(locator)
        if locator.strategy == LocatorStrategy.VISUAL:
            return []
        if locator.strategy == LocatorStrategy.REF:
            handle = await self.refs.resolve_ref(locator.value)
            return [handle] if handle is not None else []

        structural = self._structural()
        if structural is None:
            return []
        try:
            return await structural.find_all(locator)
        except Exception as exc:
            logger.debug(f"[Engine] Structural query failed for {locator.value}: {exc}")
            return []

    async def wait_for(
        self,
        locator: LocatorLike,
        options: Optional[WaitOptions] = None,
    ) -> Optional[ElementHandle]:
        """
        Poll ``find`` until the element reaches the wanted state.

        Args:
            locator: Raw or normalized locator
            options: timeout_ms, interval_ms and state ("visible" or "hidden")

        Returns:
            The handle once visible, or None once hidden

        Raises:
            ElementNotFoundError: when the timeout elapses first
        """
        locator = normalize_locator(locator)
        options = options or WaitOptions()
        timeout_ms = options.timeout_ms if options.timeout_ms is not None else self.default_timeout_ms
        interval_s = max(options.interval_ms, 1) / 1000
        wait_hidden = options.state == "hidden"
        deadline = time.monotonic() + timeout_ms / 1000

        while True:
            handle = await self.find(locator)
            if wait_hidden and handle is None:
                return None
            if not wait_hidden and handle is not None:
                return handle

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(interval_s, remaining))
            if time.monotonic() >= deadline:
                break

        raise ElementNotFoundError(locator_to_description(locator), timeout_ms=timeout_ms)
