from __future__ import annotations

from abc import ABC, abstractmethod

from deskprobe.core.config import VLMProvider
from deskprobe.core.contracts import (
    ActionRequest,
    AssertRequest,
    AssertResponse,
    CompareRequest,
    CompareResponse,
    CostSummary,
    FindRequest,
    FindResponse,
    NextAction,
    VisualIssue,
)


class VisualResolver(ABC):
    """Anything that can answer find/action/assert/compare questions about screenshots."""

    provider: VLMProvider
    model: str

    @abstractmethod
    async def find_element(self, request: FindRequest) -> FindResponse:
        ...

    @abstractmethod
    async def get_next_action(self, request: ActionRequest) -> NextAction:
        ...

    @abstractmethod
    async def assert_visual(self, request: AssertRequest) -> AssertResponse:
        ...

    @abstractmethod
    async def compare_screenshots(self, request: CompareRequest) -> CompareResponse:
        ...

    @abstractmethod
    async def detect_visual_issues(self, screenshot: str) -> list[VisualIssue]:
        ...

    @abstractmethod
    def cost_summary(self) -> CostSummary:
        ...

    @property
    def total_cost(self) -> float:
        return self.cost_summary().total_cost

    def reset_cost_tracking(self) -> None:
        return None

    async def close(self) -> None:
        return None
