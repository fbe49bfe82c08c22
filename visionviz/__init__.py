"""
VisionViz - Point a camera at printed text, pick words, and watch them
become a 2D animation or a rendered 3D model.

Pipeline: camera frame -> text detection (VLM) -> block selection ->
visualization planning (VLM) -> sandboxed 2D animation or remote 3D asset.

Usage:
    from visionviz import Settings, VisionSession

    async with VisionSession.from_settings(Settings.from_env()) as session:
        await session.capture()
        session.select_at(0.4, 0.2)
        await session.visualize()

VLM Usage:
    from visionviz.vlm import VLMRouter

    router = VLMRouter(detection_provider="auto")  # Ollama first, then Gemini
    blocks = await router.detect(frame)
"""

from visionviz.camera import Camera
from visionviz.canvas import Canvas, CanvasContext, Viewport, draw_blocks
from visionviz.capture import CaptureLoop, CaptureSession
from visionviz.config import Settings
from visionviz.console import LogConsole, LogEntry, Severity
from visionviz.errors import (
    CameraError,
    DetectionError,
    MalformedResponseError,
    MissingEndpointError,
    PlanningError,
    RenderError,
    ScriptCompileError,
    ScriptRuntimeError,
    VisionVizError,
)
from visionviz.frames import Frame
from visionviz.geometry import Size, normalize_box_2d, pointer_to_normalized
from visionviz.render_client import RenderClient
from visionviz.sandbox import DrawRoutine, compile_script
from visionviz.schema import Block, BoundingBox, VisualizationMode, VisualizationPlan
from visionviz.selection import SelectionEngine
from visionviz.session import SessionState, VisionSession
from visionviz.visualization import (
    AssetHandle,
    Visualization2D,
    Visualization3D,
    VisualizationDispatcher,
)

__version__ = "0.1.0"

__all__ = [
    # Session
    "VisionSession",
    "SessionState",
    "Settings",
    # Capture
    "Camera",
    "CaptureLoop",
    "CaptureSession",
    "Frame",
    # Schema & geometry
    "Block",
    "BoundingBox",
    "VisualizationMode",
    "VisualizationPlan",
    "Size",
    "normalize_box_2d",
    "pointer_to_normalized",
    # Selection
    "SelectionEngine",
    # Visualization
    "VisualizationDispatcher",
    "Visualization2D",
    "Visualization3D",
    "AssetHandle",
    "RenderClient",
    "Canvas",
    "CanvasContext",
    "Viewport",
    "draw_blocks",
    "compile_script",
    "DrawRoutine",
    # Logging
    "LogConsole",
    "LogEntry",
    "Severity",
    # Errors
    "VisionVizError",
    "CameraError",
    "DetectionError",
    "MalformedResponseError",
    "PlanningError",
    "ScriptCompileError",
    "ScriptRuntimeError",
    "RenderError",
    "MissingEndpointError",
]
