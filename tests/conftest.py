"""
Shared fakes for DeskProbe tests.

Backends are MagicMocks specced against the real ABCs so a typo in a method
name fails loudly; async methods are AsyncMocks.
"""

from typing import Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from deskprobe.core.adapters.base import CoordinateBackend, InitResult, StructuralBackend
from deskprobe.core.contracts import CostSummary, ElementHandle, FindResponse
from deskprobe.core.vision.base import VisualResolver


def _structural(
    elements: Optional[list[ElementHandle]] = None,
    available: bool = True,
    found: Optional[ElementHandle] = None,
) -> MagicMock:
    backend = MagicMock(spec=StructuralBackend)
    backend.name = "cdp"
    backend.is_available.return_value = available
    backend.initialize = AsyncMock(return_value=InitResult(ok=available, error=None if available else "down"))
    backend.cleanup = AsyncMock()
    backend.get_snapshot = AsyncMock(return_value=list(elements or []))
    backend.find = AsyncMock(return_value=found)
    backend.find_all = AsyncMock(return_value=[])
    backend.screenshot_base64 = AsyncMock(return_value="c3RydWN0dXJhbA==")
    for method in ("click", "type", "press", "hover", "scroll", "drag", "wait_for_idle"):
        setattr(backend, method, AsyncMock(return_value=None))
    return backend


def _coordinate(name: str, available: bool = True) -> MagicMock:
    backend = MagicMock(spec=CoordinateBackend)
    backend.name = name
    backend.is_available.return_value = available
    backend.initialize = AsyncMock(return_value=InitResult(ok=available, error=None if available else "down"))
    backend.cleanup = AsyncMock()
    backend.screenshot_base64 = AsyncMock(return_value=f"{name}-screenshot")
    backend.get_screen_size = AsyncMock(return_value=(1920, 1080))
    for method in ("click_at", "move_to", "drag_between", "type_text", "press_key", "scroll"):
        setattr(backend, method, AsyncMock(return_value=None))
    return backend


def _visual(response: Optional[FindResponse] = None, cost_per_call: float = 0.0) -> MagicMock:
    resolver = MagicMock(spec=VisualResolver)
    state = {"cost": 0.0, "calls": 0}

    async def find_element(request):
        state["calls"] += 1
        state["cost"] += cost_per_call
        return response or FindResponse.not_found("nothing there")

    resolver.find_element = AsyncMock(side_effect=find_element)
    resolver.get_next_action = AsyncMock()
    resolver.assert_visual = AsyncMock()
    resolver.compare_screenshots = AsyncMock()
    resolver.detect_visual_issues = AsyncMock(return_value=[])
    resolver.close = AsyncMock()
    type(resolver).total_cost = property(lambda self: state["cost"])
    resolver.cost_summary.side_effect = lambda: CostSummary(
        total_cost=state["cost"],
        total_calls=state["calls"],
        by_provider={},
        by_operation={},
    )
    return resolver


@pytest.fixture
def make_structural() -> Callable[..., MagicMock]:
    return _structural


@pytest.fixture
def make_coordinate() -> Callable[..., MagicMock]:
    return _coordinate


@pytest.fixture
def make_visual() -> Callable[..., MagicMock]:
    return _visual


@pytest.fixture
def elements() -> list[ElementHandle]:
    return [
        ElementHandle(id="1", role="button", name="Save", selector='[data-deskprobe-node="1"]'),
        ElementHandle(id="2", role="textbox", name="Search", selector='[data-deskprobe-node="2"]'),
        ElementHandle(id="3", role="button", name="Save", selector='[data-deskprobe-node="3"]'),
    ]
