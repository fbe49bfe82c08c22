"""
Desktop front end: an OpenCV preview window over a VisionSession.

Keys:
    SPACE  capture the current frame and detect text
    click  toggle the block under the pointer
    v      visualize the selected text
    r      retake / reset
    q      quit

Usage:
    visionviz --render-endpoint https://example.ngrok.app --display-width 960
"""

import argparse
import asyncio
import logging
from typing import List, Optional, Set, Tuple

import cv2

from visionviz.canvas import Viewport, draw_blocks
from visionviz.config import Settings
from visionviz.errors import CameraError
from visionviz.geometry import Size
from visionviz.session import VisionSession
from visionviz.visualization import Visualization2D, Visualization3D

logger = logging.getLogger(__name__)

PREVIEW_WINDOW = "VisionViz"
CANVAS_WINDOW = "VisionViz 2D"
KEY_SPACE = 32


class PreviewWindow:
    """Collects clicks from the OpenCV window and shows the overlaid frame."""

    def __init__(self, title: str = PREVIEW_WINDOW, display_width: int = 960):
        self.title = title
        self.display_width = display_width
        self.display: Optional[Size] = None
        self.clicks: List[Tuple[int, int]] = []
        cv2.namedWindow(self.title)
        cv2.setMouseCallback(self.title, self._on_mouse)

    def _on_mouse(self, event, x, y, flags, param):
        if event == cv2.EVENT_LBUTTONDOWN:
            self.clicks.append((x, y))

    def show(self, image) -> None:
        height, width = image.shape[:2]
        scale = self.display_width / width
        display_height = max(1, int(round(height * scale)))
        self.display = Size(self.display_width, display_height)
        cv2.imshow(self.title, cv2.resize(image, (self.display_width, display_height)))

    def take_clicks(self) -> List[Tuple[int, int]]:
        clicks, self.clicks = self.clicks, []
        return clicks


async def run_app(settings: Settings, display_width: int = 960) -> None:
    viewport = Viewport(settings.camera_width, settings.camera_height)
    session = VisionSession.from_settings(settings, viewport=viewport)
    window = PreviewWindow(display_width=display_width)
    tasks: Set[asyncio.Task] = set()
    shown_asset: Optional[str] = None

    def spawn(coro) -> None:
        task = asyncio.create_task(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    await session.start()
    if session.degraded:
        logger.error("Camera unavailable; exiting")
        await session.close()
        cv2.destroyAllWindows()
        return

    try:
        while True:
            loop = session.capture_loop
            if not loop.frozen and not loop.degraded:
                try:
                    await loop.snapshot()
                except CameraError:
                    logger.error("Camera stopped; press q to quit")
            frame = loop.displayed_frame
            if frame is not None:
                selection = loop.session.selection if loop.session else None
                blocks = selection.blocks if selection else loop.blocks
                selected = selection.selected_ids if selection else []
                window.show(draw_blocks(frame, blocks, selected))

                for x, y in window.take_clicks():
                    if window.display is not None:
                        session.click(x, y, window.display, frame.size)

            viz = session.visualization
            if isinstance(viz, Visualization2D):
                cv2.imshow(CANVAS_WINDOW, viz.canvas.to_bgr())
            elif isinstance(viz, Visualization3D) and viz.asset.path != shown_asset:
                shown_asset = viz.asset.path
                session.console.info(f"3D asset saved to {shown_asset}")

            key = cv2.waitKey(1) & 0xFF
            if key == ord("q"):
                break
            if key == KEY_SPACE:
                spawn(session.capture())
            elif key == ord("v"):
                spawn(session.visualize())
            elif key == ord("r"):
                session.reset()
                if _window_open(CANVAS_WINDOW):
                    cv2.destroyWindow(CANVAS_WINDOW)

            await asyncio.sleep(1 / settings.animation_fps)
    finally:
        for task in list(tasks):
            task.cancel()
        await session.close()
        cv2.destroyAllWindows()


def _window_open(title: str) -> bool:
    try:
        return cv2.getWindowProperty(title, cv2.WND_PROP_VISIBLE) >= 1
    except cv2.error:
        return False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="visionviz",
        description="Point a camera at text, select it, and visualize it.",
    )
    parser.add_argument("--render-endpoint", help="Base URL of the 3D renderer")
    parser.add_argument("--camera", type=int, help="Camera device index")
    parser.add_argument(
        "--detection-provider", choices=["gemini", "ollama", "claude", "auto"]
    )
    parser.add_argument("--planning-provider", choices=["gemini", "ollama", "claude"])
    parser.add_argument("--display-width", type=int, default=960)
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    settings = Settings.from_env()
    overrides = {
        "render_endpoint": args.render_endpoint,
        "camera_index": args.camera,
        "detection_provider": args.detection_provider,
        "planning_provider": args.planning_provider,
        "verbose": True if args.verbose else None,
    }
    updates = {k: v for k, v in overrides.items() if v is not None}
    if updates:
        settings = Settings(**{**settings.model_dump(), **updates})

    logging.basicConfig(
        level=logging.DEBUG if settings.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_app(settings, display_width=args.display_width))


if __name__ == "__main__":
    main()
