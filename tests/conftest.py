"""Shared fixtures for tests."""

import asyncio
from typing import List
from unittest.mock import AsyncMock

import numpy as np
import pytest

from visionviz.console import LogConsole
from visionviz.errors import CameraError
from visionviz.frames import Frame
from visionviz.schema import Block, BoundingBox


class FakeCamera:
    """Stands in for visionviz.camera.Camera without a device."""

    def __init__(self, width: int = 640, height: int = 480, fail_open: bool = False):
        self.width = width
        self.height = height
        self.fail_open = fail_open
        self.fail_read = False
        self.open_calls = 0
        self.read_calls = 0
        self.release_calls = 0

    @property
    def is_open(self) -> bool:
        return self.open_calls > 0 and self.release_calls == 0

    def open(self) -> None:
        self.open_calls += 1
        if self.fail_open:
            raise CameraError("Could not open camera 0")

    def read(self) -> Frame:
        self.read_calls += 1
        if self.fail_read:
            raise CameraError("Camera 0 stopped delivering frames")
        image = np.full((self.height, self.width, 3), self.read_calls % 255, dtype=np.uint8)
        return Frame(image=image)

    def release(self) -> None:
        self.release_calls += 1


def make_block(
    block_id: str, text: str, x0: float, y0: float, x1: float, y1: float
) -> Block:
    return Block(id=block_id, text=text, bbox=BoundingBox(x0=x0, y0=y0, x1=x1, y1=y1))


@pytest.fixture
def fake_camera():
    return FakeCamera()


@pytest.fixture
def console():
    return LogConsole()


@pytest.fixture
def frame():
    return Frame(image=np.zeros((480, 640, 3), dtype=np.uint8))


@pytest.fixture
def sample_blocks() -> List[Block]:
    return [
        make_block("1-0", "Photosynthesis", 0.2, 0.1, 0.6, 0.3),
        make_block("1-1", "Chlorophyll", 0.1, 0.5, 0.4, 0.6),
        make_block("1-2", "Light", 0.3, 0.5, 0.5, 0.7),
    ]


@pytest.fixture
def detector(sample_blocks):
    """Detector whose detect() returns sample_blocks."""
    mock = AsyncMock()
    mock.detect.return_value = sample_blocks
    return mock


@pytest.fixture
def planner():
    return AsyncMock()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` while letting executor work and tasks progress."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)
