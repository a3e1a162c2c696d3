from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple


class TestMode(str, Enum):
    DETERMINISTIC = "deterministic"
    VISUAL = "visual"
    HYBRID = "hybrid"

    # Keeps pytest from collecting the enum as a test class.
    __test__ = False


class LocatorStrategy(str, Enum):
    REF = "ref"
    CSS = "css"
    XPATH = "xpath"
    TEXT = "text"
    ROLE = "role"
    TESTID = "testid"
    VISUAL = "visual"


class ElementSource(str, Enum):
    DOM = "dom"
    VLM = "vlm"


class ActionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    VLM_FALLBACK = "vlm_fallback"


class ActionType(str, Enum):
    CLICK = "click"
    TYPE = "type"
    HOVER = "hover"
    DRAG = "drag"
    SCROLL = "scroll"
    PRESS = "press"


class CostOperation(str, Enum):
    FIND = "find"
    ACTION = "action"
    ASSERT = "assert"
    ANALYZE = "analyze"


@dataclass(frozen=True)
class Locator:
    strategy: LocatorStrategy
    value: str
    nth: Optional[int] = None
    within: Optional["Locator"] = None


@dataclass(frozen=True)
class BoundingBox:
    """Screen-space rectangle of an element."""
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Tuple[float, float]:
        """Get center coordinates of the bounding box."""
        return (self.x + self.width / 2, self.y + self.height / 2)

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ElementHandle:
    id: str
    role: str
    name: str = ""
    source: ElementSource = ElementSource.DOM
    bounding_box: Optional[BoundingBox] = None
    nth: Optional[int] = None
    selector: Optional[str] = None

    @property
    def is_visual(self) -> bool:
        return self.source == ElementSource.VLM


@dataclass(frozen=True)
class Snapshot:
    snapshot_id: str
    timestamp: float
    tree: str
    refs: Mapping[str, ElementHandle]
    screenshot: Optional[str] = None


@dataclass(frozen=True)
class CostEntry:
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    images: int
    cost: float
    timestamp: float
    operation: CostOperation

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["operation"] = self.operation.value
        return payload


@dataclass(frozen=True)
class CostSummary:
    total_cost: float
    total_calls: int
    by_provider: dict[str, float]
    by_operation: dict[str, float]
    entries: tuple[CostEntry, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_cost": self.total_cost,
            "total_calls": self.total_calls,
            "by_provider": self.by_provider,
            "by_operation": self.by_operation,
            "entries": [entry.to_dict() for entry in self.entries],
        }


@dataclass
class ActionResult:
    status: ActionStatus
    duration_ms: float = 0.0
    used_vlm: bool = False
    vlm_cost: float = 0.0
    error: Optional[str] = None
    data: Any = None
    backend: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (ActionStatus.SUCCESS, ActionStatus.VLM_FALLBACK)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 2),
            "used_vlm": self.used_vlm,
            "vlm_cost": self.vlm_cost,
            "error": self.error,
            "data": self.data,
            "backend": self.backend,
        }


@dataclass(frozen=True)
class ClickOptions:
    button: str = "left"
    count: int = 1
    delay_ms: int = 0
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class TypeOptions:
    delay_ms: int = 0
    clear: bool = False
    submit: bool = False


@dataclass(frozen=True)
class ScrollOptions:
    direction: str = "down"
    amount: int = 300


@dataclass(frozen=True)
class WaitOptions:
    timeout_ms: Optional[int] = None
    interval_ms: int = 100
    state: str = "visible"


@dataclass(frozen=True)
class ActionSpec:
    action_type: ActionType
    text: Optional[str] = None
    key: Optional[str] = None
    click: ClickOptions = field(default_factory=ClickOptions)
    type_options: TypeOptions = field(default_factory=TypeOptions)
    scroll: ScrollOptions = field(default_factory=ScrollOptions)
    element: Optional[ElementHandle] = None
    destination: Optional[ElementHandle] = None


@dataclass(frozen=True)
class FindRequest:
    screenshot: str
    description: str
    context: Optional[str] = None


@dataclass(frozen=True)
class FindResponse:
    found: bool
    coordinates: Optional[Tuple[float, float]] = None
    confidence: float = 0.0
    reasoning: str = ""
    alternative: Optional[str] = None

    @classmethod
    def not_found(cls, reasoning: str, alternative: Optional[str] = None) -> "FindResponse":
        return cls(found=False, confidence=0.0, reasoning=reasoning, alternative=alternative)


@dataclass(frozen=True)
class ActionRequest:
    screenshot: str
    instruction: str
    action_spaces: tuple[str, ...] = ()
    history: tuple[str, ...] = ()


@dataclass(frozen=True)
class NextAction:
    action_type: str
    action_params: dict[str, Any] = field(default_factory=dict)
    thought: str = ""
    reflection: Optional[str] = None
    finished: bool = False


@dataclass(frozen=True)
class AssertRequest:
    screenshot: str
    assertion: str
    expected: Optional[str] = None


@dataclass(frozen=True)
class AssertResponse:
    passed: bool
    confidence: float = 0.0
    reasoning: str = ""
    actual: Optional[str] = None
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompareRequest:
    baseline: str
    current: str
    context: Optional[str] = None


@dataclass(frozen=True)
class ScreenDifference:
    kind: str
    description: str
    severity: str = "minor"


@dataclass(frozen=True)
class CompareResponse:
    differences: tuple[ScreenDifference, ...] = ()
    summary: str = ""
    similarity_score: float = 0.0


@dataclass(frozen=True)
class VisualIssue:
    kind: str
    severity: str
    description: str
    location: Optional[BoundingBox] = None
    suggestion: Optional[str] = None
