"""
Agent mode: delegate visual questions to the AI agent hosting the test run.

Instead of calling a paid API, each question is written to disk as a
screenshot plus a ``request_<id>.json`` file. The hosting agent answers by
writing ``response_<id>.json`` next to it (see ``handle_agent_request``), or
a single answer can be supplied up front through the config.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from deskprobe.core.config import AgentEnvironment, VLMConfig, VLMProvider
from deskprobe.core.contracts import (
    ActionRequest,
    AssertRequest,
    AssertResponse,
    CompareRequest,
    CompareResponse,
    CostOperation,
    CostSummary,
    FindRequest,
    FindResponse,
    NextAction,
    VisualIssue,
)
from deskprobe.core.errors import ParseFailureError
from deskprobe.core.vision.base import VisualResolver
from deskprobe.core.vision.cost_tracker import CostTracker, Pricing
from deskprobe.core.vision.imaging import extension_for, side_by_side, strip_data_uri
from deskprobe.core.vision.parsing import (
    assert_response_from_dict,
    compare_response_from_dict,
    find_response_from_dict,
    next_action_from_dict,
    parse_json_response,
    visual_issues_from_dict,
)

logger = logging.getLogger("deskprobe.agent")

FREE = Pricing(input_token_price=0.0, output_token_price=0.0, image_price=0.0)


class AgentBridge(VisualResolver):
    """File-exchange visual resolver. Every request is recorded at zero cost."""

    def __init__(
        self,
        config: Optional[VLMConfig] = None,
        environment: AgentEnvironment = AgentEnvironment.UNKNOWN,
    ) -> None:
        self.config = config or VLMConfig(provider=VLMProvider.AGENT)
        self.provider = VLMProvider.AGENT
        self.model = self.config.model or "agent"
        self.environment = environment
        self.directory = Path(self.config.agent_dir)
        self.cost_tracker = CostTracker()
        self.cost_tracker.set_pricing(VLMProvider.AGENT.value, FREE)
        self._pending_response = self.config.agent_response
        self._request_count = 0
        logger.info(f"[Agent] Agent bridge ready (environment: {environment.value}, dir: {self.directory})")

    @property
    def request_count(self) -> int:
        return self._request_count

    def _save_screenshot(self, screenshot_b64: str, stamp: str) -> Path:
        path = self.directory / f"screenshot_{stamp}{extension_for(screenshot_b64)}"
        path.write_bytes(base64.b64decode(strip_data_uri(screenshot_b64)))
        return path

    def _write_files(self, kind: str, screenshot_b64: str, fields: dict[str, Any], stamp: str) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        screenshot_path = self._save_screenshot(screenshot_b64, stamp)
        request = {
            "type": kind,
            "screenshot": str(screenshot_path),
            **fields,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        request_path = self.directory / f"request_{stamp}.json"
        request_path.write_text(json.dumps(request, indent=2), encoding="utf-8")
        return request_path

    async def _write_request(
        self,
        kind: str,
        screenshot_b64: str,
        fields: dict[str, Any],
        operation: CostOperation,
    ) -> Path:
        self._request_count += 1
        stamp = f"{int(time.time() * 1000)}_{self._request_count}"
        request_path = await asyncio.to_thread(self._write_files, kind, screenshot_b64, fields, stamp)
        self.cost_tracker.track(
            provider=VLMProvider.AGENT.value,
            model=self.model,
            input_tokens=0,
            output_tokens=0,
            operation=operation,
        )
        logger.info(f"[Agent] {kind} request written to {request_path}")
        return request_path

    def _take_configured_response(self) -> Optional[dict[str, Any]]:
        raw, self._pending_response = self._pending_response, None
        if raw is None:
            return None
        try:
            return parse_json_response(raw)
        except ParseFailureError:
            logger.warning("[Agent] Ignoring configured response that is not JSON")
            return None

    async def _await_answer(self, request_path: Path) -> Optional[dict[str, Any]]:
        configured = self._take_configured_response()
        if configured is not None:
            return configured

        response_path = response_path_for(request_path)
        deadline = time.monotonic() + self.config.agent_response_timeout_s
        while True:
            if await asyncio.to_thread(response_path.exists):
                text = await asyncio.to_thread(response_path.read_text, encoding="utf-8")
                try:
                    return parse_json_response(text)
                except ParseFailureError:
                    logger.warning(f"[Agent] Unparseable response file {response_path}")
                    return None
            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(self.config.agent_poll_interval_s)

    async def find_element(self, request: FindRequest) -> FindResponse:
        request_path = await self._write_request(
            "find_element",
            request.screenshot,
            {"description": request.description, "context": request.context},
            CostOperation.FIND,
        )
        answer = await self._await_answer(request_path)
        if answer is None:
            return FindResponse.not_found(
                "Waiting for the agent to analyze the screenshot",
                alternative="Answer the request file or provide coordinates manually",
            )
        return find_response_from_dict(answer)

    async def get_next_action(self, request: ActionRequest) -> NextAction:
        request_path = await self._write_request(
            "get_action",
            request.screenshot,
            {"instruction": request.instruction, "actionSpaces": list(request.action_spaces)},
            CostOperation.ACTION,
        )
        answer = await self._await_answer(request_path)
        if answer is None:
            return NextAction(action_type="wait", thought="Waiting for the agent to provide an action")
        return next_action_from_dict(answer)

    async def assert_visual(self, request: AssertRequest) -> AssertResponse:
        request_path = await self._write_request(
            "assert_visual",
            request.screenshot,
            {"assertion": request.assertion, "expected": request.expected},
            CostOperation.ASSERT,
        )
        answer = await self._await_answer(request_path)
        if answer is None:
            return AssertResponse(
                passed=False,
                reasoning="Waiting for the agent to verify the assertion",
                actual="Pending verification",
            )
        return assert_response_from_dict(answer)

    async def compare_screenshots(self, request: CompareRequest) -> CompareResponse:
        combined = await asyncio.to_thread(side_by_side, request.baseline, request.current)
        request_path = await self._write_request(
            "compare_screenshots",
            combined,
            {"context": request.context},
            CostOperation.ASSERT,
        )
        answer = await self._await_answer(request_path)
        if answer is None:
            return CompareResponse(summary="Waiting for the agent to compare the screenshots")
        return compare_response_from_dict(answer)

    async def detect_visual_issues(self, screenshot: str) -> list[VisualIssue]:
        request_path = await self._write_request("detect_visual_issues", screenshot, {}, CostOperation.ANALYZE)
        answer = await self._await_answer(request_path)
        if answer is None:
            return []
        return visual_issues_from_dict(answer)

    def cost_summary(self) -> CostSummary:
        return self.cost_tracker.get_summary()

    @property
    def total_cost(self) -> float:
        return self.cost_tracker.total_cost

    def reset_cost_tracking(self) -> None:
        self.cost_tracker.reset()


def response_path_for(request_path: Path) -> Path:
    return request_path.with_name(request_path.name.replace("request_", "response_", 1))


AGENT_PROMPTS = {
    "find_element": (
        'Look at this screenshot and find the element described as: "{description}"\n{context}\n'
        "Return a JSON object with:\n"
        "- coordinates: {{\"x\": number, \"y\": number}} - the center point of the element\n"
        "- confidence: number (0-1)\n"
        "- reasoning: string\n"
        "- notFound: boolean"
    ),
    "get_action": (
        'Look at this screenshot and determine the next action for: "{instruction}"\n'
        "Available actions: {actions}\n"
        "Return a JSON object with actionType, actionParams, thought and finished."
    ),
    "assert_visual": (
        'Look at this screenshot and verify: "{assertion}"\n{expected}\n'
        "Return a JSON object with passed (boolean), reasoning and actual (what you observed)."
    ),
    "compare_screenshots": (
        "This image holds two screenshots side by side: the baseline on the left and the "
        "current state on the right. List what changed between them.\n{context}\n"
        "Return a JSON object with differences (array of type, description and severity), "
        "summary and similarityScore (0-1)."
    ),
    "detect_visual_issues": (
        "Look at this screenshot for visual defects: truncated text, overlap, misalignment, "
        "poor contrast, blur, uneven spacing and broken layout.\n"
        "Return a JSON object with issues (array of type, severity, description, "
        "location {{\"x\", \"y\", \"width\", \"height\"}} and suggestion)."
    ),
}


async def handle_agent_request(
    request_path: "str | Path",
    analyze_image: Callable[[str, str], Awaitable[str]],
) -> Path:
    """
    Answer one request file on behalf of the hosting agent.

    Args:
        request_path: Path to a ``request_*.json`` file
        analyze_image: Coroutine taking (screenshot path, prompt) and returning model text

    Returns:
        Path of the written response file
    """
    request_path = Path(request_path)
    if not await asyncio.to_thread(request_path.exists):
        raise FileNotFoundError(f"Request file not found: {request_path}")

    request = json.loads(await asyncio.to_thread(request_path.read_text, encoding="utf-8"))
    kind = request.get("type")
    if kind not in AGENT_PROMPTS:
        raise ValueError(f"Unknown request type: {kind}")

    prompt = AGENT_PROMPTS[kind].format(
        description=request.get("description", ""),
        context=f"Context: {request['context']}" if request.get("context") else "",
        instruction=request.get("instruction", ""),
        actions=", ".join(request.get("actionSpaces") or []),
        assertion=request.get("assertion", ""),
        expected=f"Expected: {request['expected']}" if request.get("expected") else "",
    )
    answer = parse_json_response(await analyze_image(request["screenshot"], prompt))

    response_path = response_path_for(request_path)
    await asyncio.to_thread(response_path.write_text, json.dumps(answer, indent=2), encoding="utf-8")
    logger.info(f"[Agent] Response written to {response_path}")
    return response_path
