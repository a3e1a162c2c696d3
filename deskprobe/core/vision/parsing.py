from __future__ import annotations

import json
import re
from typing import Any

from deskprobe.core.contracts import (
    AssertResponse,
    BoundingBox,
    CompareResponse,
    FindResponse,
    NextAction,
    ScreenDifference,
    VisualIssue,
)
from deskprobe.core.errors import ParseFailureError

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_json_response(text: str) -> dict[str, Any]:
    """
    Extract a JSON object from a model reply.

    Tries the whole text, then the first fenced code block, then the
    outermost ``{...}`` span.

    Raises:
        ParseFailureError: when no strategy yields a JSON object
    """
    candidates = [text.strip()]
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    braces = _OBJECT.search(text)
    if braces:
        candidates.append(braces.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ParseFailureError(text)


def parse_coordinates(raw: Any) -> tuple[float, float] | None:
    """Accept ``{"x": .., "y": ..}`` or ``[x, y]``; anything else is None."""
    if isinstance(raw, dict) and "x" in raw and "y" in raw:
        try:
            return float(raw["x"]), float(raw["y"])
        except (TypeError, ValueError):
            return None
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        try:
            return float(raw[0]), float(raw[1])
        except (TypeError, ValueError):
            return None
    return None


def _first_key(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _confidence(data: dict[str, Any]) -> float:
    try:
        return float(data.get("confidence") or 0.0)
    except (TypeError, ValueError):
        return 0.0


def find_response_from_dict(data: dict[str, Any]) -> FindResponse:
    coordinates = parse_coordinates(data.get("coordinates"))
    not_found = bool(_first_key(data, "notFound", "not_found")) or coordinates is None
    return FindResponse(
        found=not not_found,
        coordinates=None if not_found else coordinates,
        confidence=_confidence(data),
        reasoning=str(data.get("reasoning") or ""),
        alternative=data.get("alternative"),
    )


def next_action_from_dict(data: dict[str, Any]) -> NextAction:
    params = _first_key(data, "actionParams", "action_params")
    return NextAction(
        action_type=str(_first_key(data, "actionType", "action_type") or "wait"),
        action_params=params if isinstance(params, dict) else {},
        thought=str(data.get("thought") or ""),
        reflection=data.get("reflection"),
        finished=bool(data.get("finished", False)),
    )


def assert_response_from_dict(data: dict[str, Any]) -> AssertResponse:
    suggestions = data.get("suggestions") or ()
    if isinstance(suggestions, str):
        suggestions = (suggestions,)
    return AssertResponse(
        passed=bool(data.get("passed", False)),
        confidence=_confidence(data),
        reasoning=str(data.get("reasoning") or ""),
        actual=data.get("actual"),
        suggestions=tuple(str(item) for item in suggestions),
    )


def _dict_items(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]


def compare_response_from_dict(data: dict[str, Any]) -> CompareResponse:
    differences = tuple(
        ScreenDifference(
            kind=str(item.get("type") or "changed"),
            description=str(item.get("description") or ""),
            severity=str(item.get("severity") or "low"),
        )
        for item in _dict_items(data.get("differences"))
    )
    try:
        similarity = float(_first_key(data, "similarityScore", "similarity_score") or 0.0)
    except (TypeError, ValueError):
        similarity = 0.0
    return CompareResponse(
        differences=differences,
        summary=str(data.get("summary") or ""),
        similarity_score=min(max(similarity, 0.0), 1.0),
    )


def _bounding_box(raw: Any) -> BoundingBox | None:
    if not isinstance(raw, dict):
        return None
    try:
        return BoundingBox(
            x=float(raw["x"]),
            y=float(raw["y"]),
            width=float(raw.get("width") or 0.0),
            height=float(raw.get("height") or 0.0),
        )
    except (KeyError, TypeError, ValueError):
        return None


def visual_issues_from_dict(data: dict[str, Any]) -> list[VisualIssue]:
    return [
        VisualIssue(
            kind=str(item.get("type") or "layout"),
            severity=str(item.get("severity") or "low"),
            description=str(item.get("description") or ""),
            location=_bounding_box(item.get("location")),
            suggestion=item.get("suggestion"),
        )
        for item in _dict_items(data.get("issues"))
    ]
