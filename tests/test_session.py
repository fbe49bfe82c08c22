"""Tests for the VisionSession state machine."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from visionviz.canvas import Canvas
from visionviz.capture import CaptureLoop
from visionviz.config import Settings
from visionviz.console import Severity
from visionviz.errors import PlanningError
from visionviz.geometry import Size
from visionviz.render_client import RenderClient
from visionviz.schema import VisualizationPlan
from visionviz.session import SessionState, VisionSession
from visionviz.visualization import Visualization2D, Visualization3D, VisualizationDispatcher

from conftest import FakeCamera, make_block, wait_until


@pytest.fixture
def render_client():
    return RenderClient(None)


@pytest.fixture
def session(fake_camera, detector, planner, render_client, console):
    loop = CaptureLoop(fake_camera, detector, console=console)
    dispatcher = VisualizationDispatcher(
        planner, render_client, canvas=Canvas(100, 100), console=console
    )
    return VisionSession(loop, dispatcher, console=console)


async def _captured(session):
    await session.capture_loop.start()
    await session.capture()
    return session


class TestStates:
    @pytest.mark.asyncio
    async def test_idle_to_captured_to_selected(self, session):
        assert session.state == SessionState.IDLE
        await _captured(session)
        assert session.state == SessionState.CAPTURED

        block = session.select_at(0.4, 0.2)
        assert block.text == "Photosynthesis"
        assert session.state == SessionState.SELECTED

        session.select_at(0.4, 0.2)
        assert session.state == SessionState.CAPTURED
        await session.close()

    @pytest.mark.asyncio
    async def test_select_without_capture_is_ignored(self, session):
        assert session.select_at(0.4, 0.2) is None
        assert session.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_selection_pauses_scanning(self, session):
        await _captured(session)
        session.select_at(0.4, 0.2)
        assert not session.capture_loop.scanning
        session.reset()
        assert session.capture_loop.scanning
        await session.close()

    @pytest.mark.asyncio
    async def test_click_in_display_pixels(self, session):
        await _captured(session)
        # 640x480 frame shown at 320x240
        block = session.click(128, 48, Size(320, 240), Size(640, 480))
        assert block.text == "Photosynthesis"
        await session.close()

    @pytest.mark.asyncio
    async def test_capture_while_frozen_rejected(self, session, detector):
        await _captured(session)
        assert await session.capture() is None
        assert detector.detect.await_count == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_context_manager_releases_camera(self, fake_camera, detector, planner, console):
        loop = CaptureLoop(fake_camera, detector, console=console, scan_interval_s=0.01)
        dispatcher = VisualizationDispatcher(planner, RenderClient(None), console=console)
        async with VisionSession(loop, dispatcher) as session:
            await wait_until(lambda: detector.detect.await_count >= 1)
            assert session.state == SessionState.IDLE
        assert fake_camera.release_calls == 1


class TestVisualize:
    @pytest.mark.asyncio
    async def test_empty_selection_rejected(self, session, planner, console):
        await _captured(session)
        assert await session.visualize() is None
        planner.plan.assert_not_called()
        assert "Select text before visualizing" in console.messages(Severity.ERROR)
        await session.close()

    @pytest.mark.asyncio
    async def test_missing_render_endpoint(self, session, detector, planner, console):
        """A 3D plan with no render endpoint reports missing configuration."""
        detector.detect.return_value = [make_block("1-0", "Mitochondria", 0.2, 0.1, 0.6, 0.3)]
        planner.plan.return_value = VisualizationPlan(mode="3D", script="import bpy")
        await _captured(session)
        session.select_at(0.4, 0.2)

        assert await session.visualize() is None
        planner.plan.assert_awaited_once_with("Mitochondria")
        errors = console.messages(Severity.ERROR)
        assert any("Missing configuration" in m for m in errors)
        assert session.state == SessionState.SELECTED
        await session.close()

    @pytest.mark.asyncio
    async def test_2d_visualization(self, session, planner):
        planner.plan.return_value = VisualizationPlan(mode="2D", script="ctx.fillRect(0,0,10,10)")
        await _captured(session)
        session.select_at(0.4, 0.2)

        viz = await session.visualize(run=False)
        assert isinstance(viz, Visualization2D)
        assert session.state == SessionState.VISUALIZING
        assert viz.tick()
        await session.close()

    @pytest.mark.asyncio
    async def test_3d_visualization_after_endpoint_set(self, session, planner, render_client):
        planner.plan.return_value = VisualizationPlan(mode="3D", script="import bpy")
        render_client.render = AsyncMock(return_value=b"glb")
        await _captured(session)
        session.select_at(0.4, 0.2)

        session.set_render_endpoint("https://abc.ngrok.app/")
        assert render_client.endpoint == "https://abc.ngrok.app"

        viz = await session.visualize()
        assert isinstance(viz, Visualization3D)

        session.reset()
        assert viz.asset.released
        assert session.state == SessionState.IDLE
        assert session.capture_session is None
        await session.close()

    @pytest.mark.asyncio
    async def test_planning_failure_keeps_selected(self, session, planner, console):
        planner.plan.side_effect = PlanningError("Invalid JSON from planner")
        await _captured(session)
        session.select_at(0.4, 0.2)

        assert await session.visualize() is None
        assert session.state == SessionState.SELECTED
        assert any("planning failed" in m for m in console.messages(Severity.ERROR))
        await session.close()

    @pytest.mark.asyncio
    async def test_second_visualize_rejected_while_pending(self, session, planner):
        gate = asyncio.Event()

        async def slow_plan(text):
            await gate.wait()
            return VisualizationPlan(mode="2D", script="ctx.fillRect(0,0,1,1)")

        planner.plan.side_effect = slow_plan
        await _captured(session)
        session.select_at(0.4, 0.2)

        first = asyncio.create_task(session.visualize(run=False))
        await wait_until(lambda: session.pending)
        assert await session.visualize() is None
        assert await session.capture() is None

        gate.set()
        assert await first is not None
        assert planner.plan.await_count == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_reset_discards_pending_visualization(self, session, planner, render_client):
        gate = asyncio.Event()

        async def slow_plan(text):
            await gate.wait()
            return VisualizationPlan(mode="3D", script="import bpy")

        planner.plan.side_effect = slow_plan
        render_client.endpoint = "http://render.local"
        render_client.render = AsyncMock(return_value=b"glb")
        await _captured(session)
        session.select_at(0.4, 0.2)

        pending = asyncio.create_task(session.visualize())
        await wait_until(lambda: session.pending)
        session.reset()
        gate.set()

        assert await pending is None
        assert session.visualization is None
        assert session.state == SessionState.IDLE
        await session.close()


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_clears_everything(self, session, planner, console):
        planner.plan.return_value = VisualizationPlan(mode="2D", script="ctx.fillRect(0,0,1,1)")
        await _captured(session)
        session.select_at(0.4, 0.2)
        viz = await session.visualize(run=False)

        session.reset()
        assert not viz.active
        assert session.capture_loop.blocks == []
        assert session.state == SessionState.IDLE
        assert "System reset. Resume scanning." in console.messages()
        await session.close()


class TestFromSettings:
    def test_builds_components(self, fake_camera):
        settings = Settings(
            gemini_api_key="test-key",
            render_endpoint="https://abc.ngrok.app/",
            scan_interval_s=2.0,
            animation_fps=24,
        )
        session = VisionSession.from_settings(settings, camera=fake_camera)
        assert session.capture_loop.camera is fake_camera
        assert session.capture_loop.scan_interval_s == 2.0
        assert session.dispatcher.fps == 24
        assert session.dispatcher.render_client.endpoint == "https://abc.ngrok.app"
        assert session.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_degraded_camera(self, detector, planner, console):
        camera = FakeCamera(fail_open=True)
        loop = CaptureLoop(camera, detector, console=console)
        session = VisionSession(loop, VisualizationDispatcher(planner, RenderClient(None)))
        assert await session.start() is False
        assert session.degraded
        assert await session.capture() is None
        await session.close()
