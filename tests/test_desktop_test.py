"""
Tests for the DesktopTest facade with fake backends.
"""

from unittest.mock import AsyncMock

import pytest

from deskprobe import DesktopTest, DesktopTestConfig, TestMode
from deskprobe.core.contracts import (
    ActionStatus,
    AssertResponse,
    ClickOptions,
    CompareResponse,
    ElementHandle,
    FindResponse,
    NextAction,
    TypeOptions,
    VisualIssue,
)
from deskprobe.core.errors import (
    BackendUnavailableError,
    ElementNotFoundError,
    NotConnectedError,
)

DOM_HANDLE = ElementHandle(id="cdp_1", role="element", name="Save", selector="text=Save >> nth=0")


def _config(mode: TestMode = TestMode.HYBRID, **overrides) -> DesktopTestConfig:
    return DesktopTestConfig(mode=mode, cdp=None, native=None, vlm=None, bridge=None, **overrides)


class TestConnection:
    """Tests for connect/disconnect."""

    @pytest.mark.asyncio
    async def test_actions_require_connection(self, make_structural):
        test = DesktopTest(_config(), structural=make_structural())

        with pytest.raises(NotConnectedError):
            await test.click("#save")
        with pytest.raises(NotConnectedError):
            await test.find("#save")

    @pytest.mark.asyncio
    async def test_no_backend_at_all(self, make_structural):
        test = DesktopTest(_config(), structural=make_structural(available=False))

        with pytest.raises(BackendUnavailableError):
            await test.connect()
        assert test.is_connected is False

    @pytest.mark.asyncio
    async def test_partial_availability_connects(self, make_structural, make_coordinate):
        native = make_coordinate("native", available=False)
        test = DesktopTest(_config(), structural=make_structural(), native=native)

        await test.connect()

        assert test.is_connected
        native.initialize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_session_cleans_up(self, make_structural, make_coordinate, make_visual):
        structural, bridge, resolver = make_structural(), make_coordinate("bridge"), make_visual()

        async with DesktopTest(_config(), structural=structural, bridge=bridge, visual=resolver).session() as test:
            assert test.is_connected

        assert test.is_connected is False
        structural.cleanup.assert_awaited_once()
        bridge.cleanup.assert_awaited_once()
        resolver.close.assert_awaited_once()


class TestActions:
    """Tests for facade actions."""

    @pytest.mark.asyncio
    async def test_click_ref_after_snapshot(self, make_structural, elements):
        structural = make_structural(elements)
        async with DesktopTest(_config(), structural=structural).session() as test:
            snapshot = await test.snapshot()
            result = await test.click("@e2")

        assert "@e2" not in snapshot.tree and "ref=e2" in snapshot.tree
        assert result.status == ActionStatus.SUCCESS
        clicked = structural.click.await_args.args[0]
        assert clicked.id == "e2" and clicked.name == "Search"
        structural.find.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_element_is_not_found(self, make_structural):
        async with DesktopTest(_config(), structural=make_structural(found=None)).session() as test:
            result = await test.click("#missing")

        assert result.status == ActionStatus.NOT_FOUND
        assert result.error == "Element not found: element matching #missing"

    @pytest.mark.asyncio
    async def test_ref_click_survives_snapshot_failure(self, make_structural):
        structural = make_structural()
        structural.get_snapshot.side_effect = RuntimeError("Execution context was destroyed")
        async with DesktopTest(_config(), structural=structural).session() as test:
            result = await test.click("@e1")

        assert result.status == ActionStatus.NOT_FOUND
        structural.click.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dblclick_and_right_click(self, make_structural):
        structural = make_structural(found=DOM_HANDLE)
        async with DesktopTest(_config(), structural=structural).session() as test:
            await test.dblclick("text=Save")
            await test.right_click("text=Save")

        options = [call.args[1] for call in structural.click.await_args_list]
        assert options == [ClickOptions(count=2), ClickOptions(button="right")]

    @pytest.mark.asyncio
    async def test_fill_and_clear(self, make_structural):
        structural = make_structural(found=DOM_HANDLE)
        async with DesktopTest(_config(), structural=structural).session() as test:
            await test.fill("#name", "Ada")
            await test.clear("#name")

        calls = [call.args[1:] for call in structural.type.await_args_list]
        assert calls == [("Ada", TypeOptions(clear=True)), ("", TypeOptions(clear=True))]

    @pytest.mark.asyncio
    async def test_press_and_scroll_without_element(self, make_structural, make_coordinate):
        native = make_coordinate("native")
        async with DesktopTest(_config(), structural=make_structural(), native=native).session() as test:
            pressed = await test.press("Meta+k")
            scrolled = await test.scroll(direction="up", amount=200)

        assert pressed.backend == "native" and scrolled.ok
        native.press_key.assert_awaited_once_with("k", ("Meta",))
        native.scroll.assert_awaited_once_with(0, -200)

    @pytest.mark.asyncio
    async def test_drag_reports_missing_target(self, make_structural):
        structural = make_structural()
        structural.find.side_effect = [DOM_HANDLE, None]
        async with DesktopTest(_config(), structural=structural).session() as test:
            result = await test.drag("text=Save", "#trash")

        assert result.status == ActionStatus.NOT_FOUND
        structural.drag.assert_not_awaited()


class TestVisualFallback:
    """Tests for actions resolved through the vision model."""

    @pytest.mark.asyncio
    async def test_click_text_uses_vision_and_reports_cost(self, make_structural, make_coordinate, make_visual):
        native = make_coordinate("native")
        resolver = make_visual(FindResponse(found=True, coordinates=(640, 360), confidence=0.9), cost_per_call=0.0153)
        test = DesktopTest(_config(), structural=make_structural(), native=native, visual=resolver)
        async with test.session():
            result = await test.click_text("Export")

        assert result.status == ActionStatus.VLM_FALLBACK
        assert result.used_vlm is True
        assert result.vlm_cost == pytest.approx(0.0153)
        native.click_at.assert_awaited_once_with(640, 360, button="left", count=1)
        request = resolver.find_element.await_args.args[0]
        assert request.description == 'button or link with text "Export"'
        assert request.screenshot == "native-screenshot"

    @pytest.mark.asyncio
    async def test_screenshot_source_priority(self, make_structural, make_coordinate, make_visual):
        resolver = make_visual()
        bridge = make_coordinate("bridge")
        test = DesktopTest(_config(), structural=make_structural(), bridge=bridge, visual=resolver)
        async with test.session():
            await test.click_image("red delete icon")

        assert resolver.find_element.await_args.args[0].screenshot == "bridge-screenshot"

    @pytest.mark.asyncio
    async def test_visual_miss_still_reports_cost(self, make_structural, make_visual):
        resolver = make_visual(cost_per_call=0.01)
        async with DesktopTest(_config(), structural=make_structural(), visual=resolver).session() as test:
            result = await test.click("text=Export")

        assert result.status == ActionStatus.NOT_FOUND
        assert result.vlm_cost == pytest.approx(0.01)
        assert test.cost_summary().total_calls == 1

    @pytest.mark.asyncio
    async def test_deterministic_mode_ignores_resolver(self, make_structural, make_visual):
        resolver = make_visual(FindResponse(found=True, coordinates=(1, 1), confidence=1.0))
        test = DesktopTest(_config(TestMode.DETERMINISTIC), structural=make_structural(), visual=resolver)
        async with test.session():
            result = await test.click_text("Export")

        assert result.status == ActionStatus.NOT_FOUND
        resolver.find_element.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cost_summary_without_resolver(self, make_structural):
        async with DesktopTest(_config(), structural=make_structural()).session() as test:
            assert test.cost_summary().total_calls == 0
            test.reset_cost_tracking()


class TestAI:
    """Tests for the bounded vision-driven loop."""

    @pytest.mark.asyncio
    async def test_runs_until_finished(self, make_structural, make_coordinate, make_visual):
        native = make_coordinate("native")
        resolver = make_visual()
        resolver.get_next_action = AsyncMock(
            side_effect=[
                NextAction(action_type="click", action_params={"x": 10, "y": 20}),
                NextAction(action_type="type", action_params={"text": "hello"}),
                NextAction(action_type="press", action_params={"key": "Enter"}),
                NextAction(action_type="finished", finished=True),
            ]
        )
        test = DesktopTest(_config(), structural=make_structural(), native=native, visual=resolver)
        async with test.session():
            result = await test.ai("search for hello", step_delay_ms=0)

        assert result.ok
        assert result.data == {"steps": 3, "finished": True}
        native.click_at.assert_awaited_once_with(10, 20, button="left", count=1)
        native.type_text.assert_awaited_once_with("hello", delay_ms=0)
        native.press_key.assert_awaited_once_with("Enter", ())
        last_request = resolver.get_next_action.await_args.args[0]
        assert len(last_request.history) == 3

    @pytest.mark.asyncio
    async def test_bounded_by_max_iterations(self, make_structural, make_visual):
        resolver = make_visual()
        resolver.get_next_action = AsyncMock(return_value=NextAction(action_type="scroll", action_params={}))
        test = DesktopTest(_config(), structural=make_structural(), visual=resolver)
        async with test.session():
            result = await test.ai("keep going", max_iterations=3, step_delay_ms=0)

        assert resolver.get_next_action.await_count == 3
        assert result.data == {"steps": 3, "finished": False}

    @pytest.mark.asyncio
    async def test_without_resolver_fails(self, make_structural):
        async with DesktopTest(_config(), structural=make_structural()).session() as test:
            result = await test.ai("anything")

        assert result.status == ActionStatus.FAILED

    @pytest.mark.asyncio
    async def test_assert_visual(self, make_structural, make_visual):
        resolver = make_visual()
        resolver.assert_visual = AsyncMock(return_value=AssertResponse(passed=True, confidence=0.9))
        async with DesktopTest(_config(), structural=make_structural(), visual=resolver).session() as test:
            verdict = await test.assert_visual("the dialog is closed")

        assert verdict.passed is True
        assert resolver.assert_visual.await_args.args[0].screenshot == "c3RydWN0dXJhbA=="

    @pytest.mark.asyncio
    async def test_compare_against_live_screen(self, make_structural, make_visual):
        resolver = make_visual()
        resolver.compare_screenshots.return_value = CompareResponse(summary="same", similarity_score=1.0)
        async with DesktopTest(_config(), structural=make_structural(), visual=resolver).session() as test:
            response = await test.compare_screenshots("YmFzZWxpbmU=", context="settings page")
            await test.compare_screenshots("YmFzZWxpbmU=", current="b3RoZXI=")

        assert response.similarity_score == 1.0
        live, given = [call.args[0] for call in resolver.compare_screenshots.await_args_list]
        assert (live.baseline, live.current, live.context) == ("YmFzZWxpbmU=", "c3RydWN0dXJhbA==", "settings page")
        assert given.current == "b3RoZXI="

    @pytest.mark.asyncio
    async def test_detect_visual_issues(self, make_structural, make_visual):
        resolver = make_visual()
        resolver.detect_visual_issues.return_value = [VisualIssue("overlap", "high", "menus overlap")]
        async with DesktopTest(_config(), structural=make_structural(), visual=resolver).session() as test:
            issues = await test.detect_visual_issues()

        assert issues[0].kind == "overlap"
        resolver.detect_visual_issues.assert_awaited_once_with("c3RydWN0dXJhbA==")

    @pytest.mark.asyncio
    async def test_visual_checks_need_a_resolver(self, make_structural):
        async with DesktopTest(_config(), structural=make_structural()).session() as test:
            with pytest.raises(BackendUnavailableError):
                await test.detect_visual_issues()
            with pytest.raises(BackendUnavailableError):
                await test.compare_screenshots("YmFzZWxpbmU=", current="b3RoZXI=")


class TestGetters:
    """Tests for element queries."""

    @pytest.mark.asyncio
    async def test_getters_delegate_to_structural(self, make_structural):
        structural = make_structural(found=DOM_HANDLE)
        structural.get_text = AsyncMock(return_value="Save")
        structural.is_enabled = AsyncMock(return_value=True)
        structural.find_all.return_value = [DOM_HANDLE, DOM_HANDLE]
        structural.get_bounding_box = AsyncMock(return_value={"x": 1, "y": 2, "width": 3, "height": 4})
        async with DesktopTest(_config(), structural=structural).session() as test:
            assert await test.get_text("text=Save") == "Save"
            assert await test.is_enabled("text=Save") is True
            assert await test.count("text=Save") == 2
            assert await test.bounding_box("text=Save") == {"x": 1, "y": 2, "width": 3, "height": 4}

    @pytest.mark.asyncio
    async def test_missing_element(self, make_structural):
        async with DesktopTest(_config(), structural=make_structural(found=None)).session() as test:
            assert await test.is_visible("#gone") is False
            assert await test.bounding_box("#gone") is None
            with pytest.raises(ElementNotFoundError):
                await test.get_text("#gone")

    @pytest.mark.asyncio
    async def test_wait_for_timeout(self, make_structural):
        async with DesktopTest(_config(), structural=make_structural(found=None)).session() as test:
            with pytest.raises(ElementNotFoundError) as excinfo:
                await test.wait_for("#late", timeout_ms=50, interval_ms=10)

        assert excinfo.value.timeout_ms == 50

    @pytest.mark.asyncio
    async def test_structural_only_capabilities(self, make_coordinate):
        async with DesktopTest(_config(), native=make_coordinate("native")).session() as test:
            with pytest.raises(BackendUnavailableError):
                await test.evaluate("1 + 1")
            with pytest.raises(BackendUnavailableError):
                await test.snapshot()
            await test.wait_for_idle()

    @pytest.mark.asyncio
    async def test_screenshot_from_coordinate_backend(self, make_coordinate, tmp_path):
        native = make_coordinate("native")
        native.screenshot_base64 = AsyncMock(return_value="/9j/")
        target = tmp_path / "shots" / "home.jpg"
        async with DesktopTest(_config(), native=native).session() as test:
            data = await test.screenshot(str(target))

        assert data == b"\xff\xd8\xff"
        assert target.read_bytes() == data
