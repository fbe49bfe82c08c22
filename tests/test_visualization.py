"""Tests for 2D animation driving, 3D assets and the dispatcher."""

import asyncio
import logging
import os
from unittest.mock import AsyncMock

import pytest

from visionviz.canvas import BACKGROUND, Canvas, Viewport
from visionviz.console import Severity
from visionviz.errors import MissingEndpointError, PlanningError, RenderError
from visionviz.render_client import RenderClient
from visionviz.schema import VisualizationMode, VisualizationPlan
from visionviz.visualization import (
    AssetHandle,
    Visualization2D,
    Visualization3D,
    VisualizationDispatcher,
    _log_task_failure,
)

from conftest import wait_until


def plan_2d(script="ctx.fillRect(0,0,10,10)"):
    return VisualizationPlan(mode="2D", script=script, rationale="simple diagram")


def plan_3d(script="import bpy"):
    return VisualizationPlan(mode="3D", script=script, rationale="biological model")


class TestAssetHandle:
    def test_writes_and_releases(self):
        handle = AssetHandle(b"glTF\x02\x00\x00\x00")
        assert os.path.exists(handle.path)
        assert handle.path.endswith(".glb")
        assert handle.read_bytes() == b"glTF\x02\x00\x00\x00"

        handle.release()
        assert handle.released
        assert not os.path.exists(handle.path)

    def test_release_is_idempotent(self):
        handle = AssetHandle(b"data")
        handle.release()
        handle.release()
        assert handle.released

    def test_read_after_release(self):
        handle = AssetHandle(b"data")
        handle.release()
        with pytest.raises(ValueError):
            handle.read_bytes()

    def test_context_manager(self):
        with AssetHandle(b"data") as handle:
            path = handle.path
        assert not os.path.exists(path)


class TestVisualization2D:
    def test_frame_count_starts_at_zero(self, console):
        canvas = Canvas(100, 100)
        viz = Visualization2D(
            plan_2d("ctx.fillText(frameCount, 0, 0);"), canvas, console=console
        )
        seen = []
        assert viz.start(run=False) is True
        viz.routine = _spy(viz.routine, seen)
        for _ in range(3):
            viz.tick()
        assert seen == [0, 1, 2]

    def test_throw_on_frame_five_does_not_block_frame_six(self, console):
        canvas = Canvas(100, 100)
        script = """
            if (frameCount === 5) { throw 'frame five'; }
            ctx.fillStyle = 'red';
            ctx.fillRect(0, 0, 10, 10);
        """
        viz = Visualization2D(plan_2d(script), canvas, console=console)
        viz.start(run=False)

        results = [viz.tick() for _ in range(7)]
        assert results == [True, True, True, True, True, False, True]
        assert viz.frame_count == 7
        assert viz.runtime_errors == 1
        assert canvas.pixel(5, 5) == (255, 0, 0)
        assert any("frame five" in m for m in console.messages(Severity.ERROR))

    def test_host_error_on_frame_five_does_not_block_frame_six(self, console, monkeypatch):
        canvas = Canvas(100, 100)
        script = """
            if (frameCount === 5) { ctx.fillText('x', 1, 1); }
            ctx.fillStyle = 'red';
            ctx.fillRect(0, 0, 10, 10);
        """

        def broken_fill_text(*args):
            raise OSError("invalid pixel size")

        monkeypatch.setattr(canvas.context, "fill_text", broken_fill_text)
        viz = Visualization2D(plan_2d(script), canvas, console=console)
        viz.start(run=False)

        results = [viz.tick() for _ in range(7)]
        assert results == [True, True, True, True, True, False, True]
        assert canvas.pixel(5, 5) == (255, 0, 0)
        assert any("OSError" in m for m in console.messages(Severity.ERROR))

    def test_huge_font_is_drawable(self, console):
        canvas = Canvas(50, 50)
        script = "ctx.font = '99999999999px sans-serif'; ctx.fillText('x', 1, 1);"
        viz = Visualization2D(plan_2d(script), canvas, console=console)
        viz.start(run=False)
        viz.tick()
        assert viz.frame_count == 1

    @pytest.mark.asyncio
    async def test_frame_loop_survives_unexpected_errors(self, console, monkeypatch):
        canvas = Canvas(10, 10)
        viz = Visualization2D(plan_2d(), canvas, console=console, fps=200)
        calls = []

        def flaky_clear():
            calls.append(1)
            if len(calls) == 2:
                raise AttributeError("surface gone")

        monkeypatch.setattr(canvas, "clear", flaky_clear)
        viz.start()
        await wait_until(lambda: len(calls) >= 4)
        assert not viz._task.done()
        assert viz.runtime_errors == 1
        viz.teardown()

    def test_each_tick_clears_canvas(self, console):
        canvas = Canvas(100, 100)
        script = "ctx.fillStyle = 'red'; ctx.fillRect(frameCount * 20, 0, 10, 10);"
        viz = Visualization2D(plan_2d(script), canvas, console=console)
        viz.start(run=False)
        viz.tick()
        viz.tick()
        assert canvas.pixel(5, 5) == BACKGROUND
        assert canvas.pixel(25, 5) == (255, 0, 0)

    def test_compile_error_shows_error_surface(self, console):
        canvas = Canvas(300, 120)
        viz = Visualization2D(plan_2d("ctx.fillRect(0, 0,"), canvas, console=console)
        assert viz.start() is False
        assert viz.compile_error is not None
        assert viz.tick() is False
        assert viz.frame_count == 0
        assert any(m.startswith("Script Error") for m in console.messages(Severity.ERROR))

    def test_repeated_runtime_error_logged_once(self, console):
        viz = Visualization2D(plan_2d("missing();"), Canvas(10, 10), console=console)
        viz.start(run=False)
        for _ in range(5):
            viz.tick()
        assert viz.runtime_errors == 5
        assert len(console.messages(Severity.ERROR)) == 1

    def test_resize_listener_attached_and_detached(self, console):
        viewport = Viewport(100, 80)
        canvas = Canvas(10, 10)
        viz = Visualization2D(plan_2d(), canvas, viewport=viewport, console=console)
        viz.start(run=False)
        assert (canvas.width, canvas.height) == (100, 80)
        assert viewport.listener_count == 1

        viewport.resize(200, 100)
        assert (canvas.width, canvas.height) == (200, 100)

        viz.teardown()
        assert viewport.listener_count == 0
        viewport.resize(50, 50)
        assert (canvas.width, canvas.height) == (200, 100)

    def test_teardown_revokes_routine(self, console):
        viz = Visualization2D(plan_2d(), Canvas(10, 10), console=console)
        viz.start(run=False)
        routine = viz.routine
        viz.teardown()
        assert routine.revoked
        assert not viz.active
        assert viz.tick() is False

    @pytest.mark.asyncio
    async def test_frame_loop_runs_and_cancels(self, console):
        viz = Visualization2D(plan_2d(), Canvas(10, 10), console=console, fps=200)
        viz.start()
        await wait_until(lambda: viz.frame_count >= 3)
        task = viz._task
        viz.teardown()
        await asyncio.sleep(0.02)
        assert task.cancelled() or task.done()
        count = viz.frame_count
        await asyncio.sleep(0.03)
        assert viz.frame_count == count


class TestAnimationTaskLogging:
    @pytest.mark.asyncio
    async def test_failed_task_is_logged(self, caplog):
        async def boom():
            raise RuntimeError("loop crashed")

        task = asyncio.create_task(boom())
        await asyncio.gather(task, return_exceptions=True)
        with caplog.at_level(logging.ERROR, logger="visionviz.visualization"):
            _log_task_failure(task)
        assert any("loop crashed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_cancelled_task_is_quiet(self, caplog):
        task = asyncio.create_task(asyncio.sleep(10))
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        with caplog.at_level(logging.ERROR, logger="visionviz.visualization"):
            _log_task_failure(task)
        assert not [r for r in caplog.records if r.name == "visionviz.visualization"]


def _spy(routine, seen):
    def wrapped(ctx, width, height, frame_count):
        seen.append(frame_count)
        return routine(ctx, width, height, frame_count)

    wrapped.revoke = routine.revoke
    return wrapped


class TestVisualization3D:
    def test_teardown_releases_asset(self):
        viz = Visualization3D(plan_3d(), AssetHandle(b"glb"))
        assert viz.active
        viz.teardown()
        assert viz.asset.released
        assert not viz.active


class TestVisualizationDispatcher:
    @pytest.fixture
    def render_client(self):
        client = RenderClient("http://render.local")
        client.render = AsyncMock(return_value=b"glTF-bytes")
        return client

    @pytest.mark.asyncio
    async def test_2d_plan(self, planner, render_client, console):
        planner.plan.return_value = plan_2d()
        dispatcher = VisualizationDispatcher(planner, render_client, console=console)
        viz = await dispatcher.visualize("Troop movements", run=False)

        assert isinstance(viz, Visualization2D)
        assert dispatcher.current is viz
        planner.plan.assert_awaited_once_with("Troop movements")
        render_client.render.assert_not_called()
        assert "Decision: 2D (simple diagram)" in console.messages()

    @pytest.mark.asyncio
    async def test_3d_plan(self, planner, render_client, console):
        planner.plan.return_value = plan_3d()
        dispatcher = VisualizationDispatcher(planner, render_client, console=console)
        viz = await dispatcher.visualize("Mitochondria")

        assert isinstance(viz, Visualization3D)
        assert viz.plan.mode == VisualizationMode.THREE_D
        assert viz.asset.read_bytes() == b"glTF-bytes"
        render_client.render.assert_awaited_once_with("import bpy")
        assert "3D Model received and loaded" in console.messages(Severity.SUCCESS)
        dispatcher.teardown()

    @pytest.mark.asyncio
    async def test_replacing_releases_previous(self, planner, render_client, console):
        planner.plan.return_value = plan_3d()
        dispatcher = VisualizationDispatcher(planner, render_client, console=console)
        first = await dispatcher.visualize("Heart")
        second = await dispatcher.visualize("Engine")
        assert first.asset.released
        assert not second.asset.released
        dispatcher.teardown()
        assert second.asset.released
        assert dispatcher.current is None

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, planner, console):
        planner.plan.return_value = plan_3d()
        dispatcher = VisualizationDispatcher(planner, RenderClient(None), console=console)
        with pytest.raises(MissingEndpointError):
            await dispatcher.visualize("Mitochondria")
        assert dispatcher.current is None

    @pytest.mark.asyncio
    async def test_render_failure_keeps_previous(self, planner, render_client, console):
        planner.plan.return_value = plan_2d()
        dispatcher = VisualizationDispatcher(planner, render_client, console=console)
        previous = await dispatcher.visualize("Map", run=False)

        planner.plan.return_value = plan_3d()
        render_client.render.side_effect = RenderError("HTTP 502")
        with pytest.raises(RenderError):
            await dispatcher.visualize("Gear")
        assert dispatcher.current is previous
        assert previous.active
        dispatcher.teardown()

    @pytest.mark.asyncio
    async def test_planning_failure_propagates(self, planner, render_client, console):
        planner.plan.side_effect = PlanningError("Invalid JSON")
        dispatcher = VisualizationDispatcher(planner, render_client, console=console)
        with pytest.raises(PlanningError):
            await dispatcher.visualize("Anything")
        assert planner.plan.await_count == 1
