"""
Structural backend over the Chrome DevTools Protocol.

Attaches Playwright to the WebView of a running Tauri/Electron app through
``connect_over_cdp`` and addresses elements with Playwright selectors.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Optional

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
)

from deskprobe.core.adapters.base import InitResult, StructuralBackend, scroll_delta
from deskprobe.core.config import CDPConfig
from deskprobe.core.contracts import (
    ClickOptions,
    ElementHandle,
    ElementSource,
    Locator,
    LocatorStrategy,
    ScrollOptions,
    TypeOptions,
)
from deskprobe.core.errors import NotConnectedError
from deskprobe.core.locator import locator_to_selector

logger = logging.getLogger("deskprobe.cdp")

NODE_ATTRIBUTE = "data-deskprobe-node"

# Tags every interactive element with a stable node id and returns them in
# document order. Ids survive re-snapshots of the same DOM node.
SNAPSHOT_JS = """
(args) => {
    const INTERACTIVE = 'a, button, input, select, textarea, [role="button"], [role="link"], [role="tab"], [role="menuitem"], [role="checkbox"], [role="radio"], [role="switch"], [role="combobox"], [role="searchbox"], [role="textbox"], [role="option"], [role="treeitem"], [onclick], [tabindex]:not([tabindex="-1"])';
    const selector = args.interactive ? INTERACTIVE : '*';
    const attr = args.attribute;
    window.__deskprobeNextNode = window.__deskprobeNextNode || 1;
    const results = [];
    for (const el of document.querySelectorAll(selector)) {
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 && rect.height === 0) continue;
        let node = el.getAttribute(attr);
        if (!node) {
            node = String(window.__deskprobeNextNode++);
            el.setAttribute(attr, node);
        }
        const tag = el.tagName.toLowerCase();
        let name = el.getAttribute('aria-label')
                || el.getAttribute('title')
                || el.getAttribute('alt')
                || el.getAttribute('placeholder')
                || (el.innerText || '').trim().substring(0, 80)
                || el.getAttribute('name')
                || '';
        name = name.replace(/\\s+/g, ' ').trim().substring(0, 100);
        results.push({node: node, role: el.getAttribute('role') || tag, name: name});
    }
    return results;
}
"""

_ROLE_FALLBACKS = {"a": "link", "input": "textbox", "textarea": "textbox", "select": "combobox"}


class CDPBackend(StructuralBackend):
    """
    Playwright-driven structural backend.

    Elements found here carry a selector and no bounding box: page
    coordinates are not screen coordinates, so every action on them stays
    inside the page.
    """

    name = "cdp"

    def __init__(self, config: Optional[CDPConfig] = None) -> None:
        self.config = config or CDPConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._handle_counter = 0
        self._recording = False

    async def initialize(self) -> InitResult:
        if self._page is not None:
            return InitResult(ok=True)
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.connect_over_cdp(
                self.config.endpoint,
                timeout=self.config.connect_timeout_ms,
            )
            contexts = self._browser.contexts
            self._context = contexts[0] if contexts else await self._browser.new_context()
            pages = self._context.pages
            self._page = pages[0] if pages else await self._context.new_page()
        except Exception as exc:
            logger.warning(f"[CDP] Failed to connect to {self.config.endpoint}: {exc}")
            await self.cleanup()
            return InitResult(ok=False, error=f"Failed to connect via CDP: {exc}")

        logger.info(f"[CDP] Connected to {self.config.endpoint}")
        return InitResult(ok=True)

    async def cleanup(self) -> None:
        try:
            if self._recording and self._context is not None:
                await self._context.tracing.stop()
            # Closing a CDP-attached browser only disconnects; the app keeps running.
            if self._browser is not None:
                await self._browser.close()
        except Exception as exc:
            logger.debug(f"[CDP] Error while disconnecting: {exc}")
        if self._playwright is not None:
            await self._playwright.stop()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._recording = False

    def is_available(self) -> bool:
        return self._page is not None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise NotConnectedError("CDP backend not connected")
        return self._page

    def _next_handle_id(self) -> str:
        self._handle_counter += 1
        return f"cdp_{self._handle_counter}"

    # ------------------------------------------------------------------
    # Element discovery
    # ------------------------------------------------------------------

    async def get_snapshot(self, interactive: bool = True) -> list[ElementHandle]:
        raw = await self.page.evaluate(
            SNAPSHOT_JS,
            {"interactive": interactive, "attribute": NODE_ATTRIBUTE},
        )
        handles = []
        for entry in raw:
            role = entry.get("role") or "generic"
            handles.append(
                ElementHandle(
                    id=str(entry["node"]),
                    role=_ROLE_FALLBACKS.get(role, role),
                    name=entry.get("name", ""),
                    source=ElementSource.DOM,
                    selector=f'[{NODE_ATTRIBUTE}="{entry["node"]}"]',
                )
            )
        logger.debug(f"[CDP] Snapshot captured {len(handles)} elements")
        return handles

    def _selector_for(self, locator: Locator) -> str:
        selector = locator_to_selector(locator)
        if locator.nth is not None:
            selector = f"{selector} >> nth={locator.nth}"
        return selector

    async def find(self, locator: Locator) -> Optional[ElementHandle]:
        if locator.strategy == LocatorStrategy.REF:
            # Refs are numbered by the snapshot cache, not by the page.
            return None
        selector = self._selector_for(locator)
        target = self.page.locator(selector)
        try:
            if await target.count() == 0:
                return None
            if not await target.first.is_visible():
                return None
        except Exception as exc:
            logger.debug(f"[CDP] Query failed for {selector}: {exc}")
            return None

        if locator.nth is None:
            selector = f"{selector} >> nth=0"
        return ElementHandle(
            id=self._next_handle_id(),
            role="element",
            name=locator.value,
            source=ElementSource.DOM,
            nth=locator.nth,
            selector=selector,
        )

    async def find_all(self, locator: Locator) -> list[ElementHandle]:
        if locator.strategy == LocatorStrategy.REF:
            return []
        selector = locator_to_selector(locator)
        try:
            count = await self.page.locator(selector).count()
        except Exception as exc:
            logger.debug(f"[CDP] Query failed for {selector}: {exc}")
            return []
        return [
            ElementHandle(
                id=self._next_handle_id(),
                role="element",
                name=locator.value,
                source=ElementSource.DOM,
                nth=index,
                selector=f"{selector} >> nth={index}",
            )
            for index in range(count)
        ]

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _locator(self, handle: ElementHandle):
        if not handle.selector:
            raise ValueError(f"Element {handle.id} has no selector")
        return self.page.locator(handle.selector)

    async def click(self, handle: ElementHandle, options: ClickOptions) -> None:
        if handle.selector is None and handle.bounding_box is not None:
            x, y = handle.bounding_box.center
            await self.page.mouse.click(
                x, y, button=options.button, click_count=options.count, delay=options.delay_ms
            )
            return
        kwargs: dict[str, Any] = {
            "button": options.button,
            "click_count": options.count,
            "delay": options.delay_ms,
        }
        if options.timeout_ms is not None:
            kwargs["timeout"] = options.timeout_ms
        await self._locator(handle).click(**kwargs)

    async def type(self, handle: Optional[ElementHandle], text: str, options: TypeOptions) -> None:
        if handle is not None and handle.selector is not None:
            target = self._locator(handle)
            if options.clear:
                await target.fill("")
            await target.press_sequentially(text, delay=options.delay_ms)
        else:
            if handle is not None and handle.bounding_box is not None:
                x, y = handle.bounding_box.center
                await self.page.mouse.click(x, y)
            await self.page.keyboard.type(text, delay=options.delay_ms)
        if options.submit:
            await self.page.keyboard.press("Enter")

    async def press(self, key: str) -> None:
        await self.page.keyboard.press(key)

    async def hover(self, handle: ElementHandle) -> None:
        if handle.selector is None and handle.bounding_box is not None:
            await self.page.mouse.move(*handle.bounding_box.center)
            return
        await self._locator(handle).hover()

    async def scroll(self, handle: Optional[ElementHandle], options: ScrollOptions) -> None:
        dx, dy = scroll_delta(options)
        if handle is not None:
            if handle.selector is not None:
                await self._locator(handle).hover()
            elif handle.bounding_box is not None:
                await self.page.mouse.move(*handle.bounding_box.center)
        await self.page.mouse.wheel(dx, dy)

    async def drag(self, source: ElementHandle, target: ElementHandle) -> None:
        if source.selector and target.selector:
            await self._locator(source).drag_to(self._locator(target))
            return
        start = await self._center_of(source)
        end = await self._center_of(target)
        await self.page.mouse.move(*start)
        await self.page.mouse.down()
        await self.page.mouse.move(*end, steps=10)
        await self.page.mouse.up()

    async def _center_of(self, handle: ElementHandle) -> tuple[float, float]:
        if handle.bounding_box is not None:
            return handle.bounding_box.center
        box = await self._locator(handle).bounding_box()
        if box is None:
            raise ValueError(f"Element {handle.id} is not rendered")
        return (box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_text(self, handle: ElementHandle) -> str:
        return await self._locator(handle).inner_text()

    async def get_value(self, handle: ElementHandle) -> str:
        return await self._locator(handle).input_value()

    async def get_attribute(self, handle: ElementHandle, name: str) -> Optional[str]:
        return await self._locator(handle).get_attribute(name)

    async def is_visible(self, handle: ElementHandle) -> bool:
        return await self._locator(handle).is_visible()

    async def is_enabled(self, handle: ElementHandle) -> bool:
        return await self._locator(handle).is_enabled()

    async def get_bounding_box(self, handle: ElementHandle) -> Optional[dict[str, float]]:
        if handle.selector is None:
            return handle.bounding_box.to_dict() if handle.bounding_box else None
        return await self._locator(handle).bounding_box()

    async def get_url(self) -> str:
        return self.page.url

    async def get_title(self) -> str:
        return await self.page.title()

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self.page.evaluate(expression, arg)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def screenshot(self, path: Optional[str] = None, full_page: bool = False) -> bytes:
        return await self.page.screenshot(path=path, full_page=full_page, type="png")

    async def screenshot_base64(self) -> str:
        raw = await self.page.screenshot(type="jpeg", quality=75)
        return base64.b64encode(raw).decode("ascii")

    async def start_recording(self) -> None:
        if self._context is None:
            raise NotConnectedError("CDP backend not connected")
        await self._context.tracing.start(screenshots=True, snapshots=True)
        self._recording = True
        logger.info("[CDP] Recording started")

    async def stop_recording(self, path: str) -> str:
        if self._context is None or not self._recording:
            raise RuntimeError("Recording not started")
        await self._context.tracing.stop(path=path)
        self._recording = False
        logger.info(f"[CDP] Recording saved to {path}")
        return path

    async def wait_for_idle(self, timeout_ms: int = 30000) -> None:
        await self.page.wait_for_load_state("networkidle", timeout=timeout_ms)

