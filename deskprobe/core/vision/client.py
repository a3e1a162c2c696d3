"""
Visual element resolution through a vision-language model.

The VLM tier is the most expensive step of element resolution: every call
sends a screenshot to a paid endpoint. Each completed exchange is priced
in the CostTracker, including replies whose content fails to parse.
"""

from __future__ import annotations

import logging
from typing import Optional

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
from deskprobe.core.vision.agent_bridge import AgentBridge
from deskprobe.core.vision.base import VisualResolver
from deskprobe.core.vision.cost_tracker import CostTracker
from deskprobe.core.vision.imaging import side_by_side
from deskprobe.core.vision.parsing import (
    assert_response_from_dict,
    compare_response_from_dict,
    find_response_from_dict,
    next_action_from_dict,
    parse_json_response,
    visual_issues_from_dict,
)
from deskprobe.core.vision.providers import VisionProvider, create_provider

logger = logging.getLogger("deskprobe.vision")

DEFAULT_ACTION_SPACES = (
    "click(x, y) - Click at coordinates",
    "type(text) - Type text",
    "scroll(direction) - Scroll up/down/left/right",
    "press(key) - Press a key or combination such as Control+s",
    "wait() - Wait for the UI to settle",
    "finished() - The instruction is complete",
)

FIND_SYSTEM_PROMPT = """You are a GUI automation assistant that locates UI elements in screenshots.

Given a screenshot and an element description:
1. Locate the described element in the screenshot
2. Return the center coordinates (x, y) of the element in screenshot pixels
3. Give your confidence between 0 and 1
4. Explain your reasoning briefly

If the element cannot be found, set notFound to true and suggest the closest alternative."""

FIND_USER_PROMPT = """Find the following element in the screenshot:
"{description}"
{context}
Return a JSON object with:
- coordinates: {{"x": number, "y": number}} or null if not found
- confidence: number (0-1)
- reasoning: string
- notFound: boolean
- alternative: string (if not found, a similar element that does exist)"""

ACTION_SYSTEM_PROMPT = """You are a GUI automation agent controlling a desktop application.

Available actions:
{action_spaces}

For each step, analyze the current screenshot, choose exactly one action and
return it with its parameters. When the instruction is complete, set finished to true."""

ACTION_USER_PROMPT = """Instruction: "{instruction}"
{history}
Based on the current screenshot, what action should be taken next?

Return a JSON object with:
- actionType: string (one of the available actions)
- actionParams: object (parameters for the action)
- thought: string (your reasoning)
- reflection: string (observations about the previous step)
- finished: boolean (true if the instruction is complete)"""

ASSERT_SYSTEM_PROMPT = """You are a QA automation assistant that verifies UI states.

Given a screenshot and an assertion, determine whether the assertion holds,
explain what you observed and, when it fails, suggest how to fix it."""

ASSERT_USER_PROMPT = """Assertion: "{assertion}"
{expected}
Analyze the screenshot and verify the assertion.

Return a JSON object with:
- passed: boolean
- confidence: number (0-1)
- reasoning: string
- actual: string (what you actually observed)
- suggestions: string[] (if failed, how to fix)"""

COMPARE_SYSTEM_PROMPT = """You are a UI testing assistant. Compare two screenshots and identify all differences."""

COMPARE_USER_PROMPT = """The image shows two screenshots side by side: the baseline on the left and
the current state on the right. Compare them and identify the differences.
{context}
Return a JSON object with:
- differences: array of {{"type": "added|removed|changed|moved", "description": string, "severity": "high|medium|low"}}
- summary: string (overall summary)
- similarityScore: number (0-1, how similar they are)"""

ISSUES_SYSTEM_PROMPT = """You are a UI quality assurance expert. Detect visual issues and UI defects."""

ISSUES_USER_PROMPT = """Analyze this screenshot for visual issues and UI defects.

Check for:
1. Text truncation or overflow
2. Element overlap
3. Alignment issues
4. Color contrast problems
5. Blurry or distorted elements
6. Inconsistent spacing
7. Layout errors

Return a JSON object with:
{
  "issues": [
    {
      "type": "text_truncation|overlap|misalignment|contrast|blur|spacing|layout",
      "severity": "critical|high|medium|low",
      "description": "description of the issue",
      "location": {"x": 100, "y": 200, "width": 50, "height": 20},
      "suggestion": "how to fix it"
    }
  ]
}"""


class VLMClient(VisualResolver):
    """
    HTTP-backed visual resolver.

    Args:
        config: VLM settings
        provider: Optional pre-built provider (tests inject fakes here)
        cost_tracker: Optional shared ledger
    """

    def __init__(
        self,
        config: VLMConfig,
        provider: Optional[VisionProvider] = None,
        cost_tracker: Optional[CostTracker] = None,
    ) -> None:
        self.config = config
        self._provider = provider or create_provider(config)
        self.provider = self._provider.provider
        self.model = self._provider.model
        self.cost_tracker = cost_tracker or CostTracker()

    async def _call(
        self,
        system_prompt: str,
        user_prompt: str,
        screenshot: str,
        operation: CostOperation,
    ) -> str:
        # ProviderError propagates unpriced; only completed replies are tracked.
        reply = await self._provider.call(system_prompt, user_prompt, screenshot)
        if self.config.track_cost:
            self.cost_tracker.track(
                provider=self.provider.value,
                model=self.model,
                input_tokens=reply.input_tokens,
                output_tokens=reply.output_tokens,
                operation=operation,
                images=1,
            )
        return reply.text

    async def find_element(self, request: FindRequest) -> FindResponse:
        context = f"\nContext: {request.context}\n" if request.context else ""
        text = await self._call(
            FIND_SYSTEM_PROMPT,
            FIND_USER_PROMPT.format(description=request.description, context=context),
            request.screenshot,
            CostOperation.FIND,
        )
        try:
            response = find_response_from_dict(parse_json_response(text))
        except ParseFailureError as exc:
            logger.warning(f"[Vision] {exc}")
            return FindResponse.not_found("Failed to parse VLM response")

        if response.found:
            logger.info(
                f"[Vision] Found '{request.description}' at {response.coordinates} "
                f"(confidence {response.confidence:.2f})"
            )
        else:
            logger.info(f"[Vision] '{request.description}' not found: {response.reasoning}")
        return response

    async def get_next_action(self, request: ActionRequest) -> NextAction:
        action_spaces = request.action_spaces or DEFAULT_ACTION_SPACES
        history = ""
        if request.history:
            history = "\nPrevious steps:\n" + "\n".join(f"- {step}" for step in request.history) + "\n"
        text = await self._call(
            ACTION_SYSTEM_PROMPT.format(action_spaces="\n".join(action_spaces)),
            ACTION_USER_PROMPT.format(instruction=request.instruction, history=history),
            request.screenshot,
            CostOperation.ACTION,
        )
        try:
            return next_action_from_dict(parse_json_response(text))
        except ParseFailureError as exc:
            logger.warning(f"[Vision] {exc}")
            return NextAction(action_type="wait", thought="Failed to parse VLM response")

    async def assert_visual(self, request: AssertRequest) -> AssertResponse:
        expected = f"\nExpected: {request.expected}\n" if request.expected else ""
        text = await self._call(
            ASSERT_SYSTEM_PROMPT,
            ASSERT_USER_PROMPT.format(assertion=request.assertion, expected=expected),
            request.screenshot,
            CostOperation.ASSERT,
        )
        try:
            return assert_response_from_dict(parse_json_response(text))
        except ParseFailureError as exc:
            logger.warning(f"[Vision] {exc}")
            return AssertResponse(passed=False, reasoning="Failed to parse VLM response", actual="Unknown")

    async def compare_screenshots(self, request: CompareRequest) -> CompareResponse:
        """
        Compare a baseline screenshot with the current one.

        Both images go out as a single side-by-side picture, so one call
        is priced for the pair.
        """
        context = f"\nContext: {request.context}\n" if request.context else ""
        text = await self._call(
            COMPARE_SYSTEM_PROMPT,
            COMPARE_USER_PROMPT.format(context=context),
            side_by_side(request.baseline, request.current),
            CostOperation.ASSERT,
        )
        try:
            response = compare_response_from_dict(parse_json_response(text))
        except ParseFailureError as exc:
            logger.warning(f"[Vision] {exc}")
            return CompareResponse(summary="Failed to parse response")

        logger.info(
            f"[Vision] Screenshot comparison: {len(response.differences)} differences, "
            f"similarity {response.similarity_score:.2f}"
        )
        return response

    async def detect_visual_issues(self, screenshot: str) -> list[VisualIssue]:
        text = await self._call(ISSUES_SYSTEM_PROMPT, ISSUES_USER_PROMPT, screenshot, CostOperation.ANALYZE)
        try:
            issues = visual_issues_from_dict(parse_json_response(text))
        except ParseFailureError as exc:
            logger.warning(f"[Vision] {exc}")
            return []
        logger.info(f"[Vision] Detected {len(issues)} visual issues")
        return issues

    def cost_summary(self) -> CostSummary:
        return self.cost_tracker.get_summary()

    @property
    def total_cost(self) -> float:
        return self.cost_tracker.total_cost

    def reset_cost_tracking(self) -> None:
        self.cost_tracker.reset()

    async def close(self) -> None:
        await self._provider.close()


def create_visual_resolver(
    config: VLMConfig,
    agent_environment: Optional[AgentEnvironment] = None,
) -> VisualResolver:
    """
    Build the visual resolver for a config.

    Agent mode is used when the provider is ``agent``, or when an agent host
    was detected and no API key is configured.
    """
    use_agent = config.provider == VLMProvider.AGENT or (
        agent_environment is not None and not config.api_key
    )
    if use_agent:
        if agent_environment is not None and config.provider != VLMProvider.AGENT:
            logger.info(f"[Vision] Detected {agent_environment.value} environment, using agent mode")
        return AgentBridge(config, environment=agent_environment or AgentEnvironment.UNKNOWN)
    return VLMClient(config)
