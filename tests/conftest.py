"""
Shared pytest fixtures and fakes for the surveillance tests.

The detection capability and the camera are replaced by in-memory fakes, so
no model weights or hardware are needed.
"""
import itertools
from typing import List, Optional

import numpy as np
import pytest
import pytest_asyncio

from database import SurveillanceStore
from faces import FaceBox, FaceDetection, Frame
from notifications import NotificationCenter
from pipeline import DetectionPipeline
from registry import KnownFaceRegistry
from schemas import DetectionRecord, PersonDetails, UNKNOWN_LABEL, utcnow
from settings_manager import SettingsManager

FRAME_WIDTH = 1000
FRAME_HEIGHT = 600


def make_descriptor(seed: int, size: int = 128) -> List[float]:
    rng = np.random.default_rng(seed)
    return rng.normal(0, 0.1, size).tolist()


def make_frame(width: int = FRAME_WIDTH, height: int = FRAME_HEIGHT) -> Frame:
    image = np.full((height, width, 3), 80, dtype=np.uint8)
    return Frame(image=image, width=width, height=height)


def face_at_distance(distance: float, descriptor=None, x: float = 100, y: float = 100,
                     score: float = 0.9, expressions=None, frame_width: int = FRAME_WIDTH) -> FaceDetection:
    """A square face sized so that estimate_distance() returns `distance`."""
    size = frame_width * 0.15 / distance
    return FaceDetection(
        box=FaceBox(x=x, y=y, width=size, height=size, score=score),
        score=score,
        descriptor=descriptor if descriptor is not None else make_descriptor(0),
        expressions=expressions if expressions is not None else {"happy": 0.8, "neutral": 0.2},
    )


def make_detection_record(index: int = 0, name: Optional[str] = None) -> DetectionRecord:
    known = name is not None
    return DetectionRecord(
        id=f"face-test-{index}",
        timestamp=utcnow(),
        confidence=0.87,
        dominant_expression="happy",
        expression_confidence=0.75,
        face_thumbnail="data:image/jpeg;base64,AAAA",
        context_image="data:image/jpeg;base64,BBBB",
        person_name=name if known else UNKNOWN_LABEL,
        is_known=known,
        estimated_distance_meters=2.5,
        person_details=PersonDetails(name=name, role="Guard", access_level="security") if known else None,
        face_descriptor=make_descriptor(index),
    )


class FakeAnalyzer:
    """Detection capability returning scripted faces."""

    def __init__(self, faces: Optional[List[FaceDetection]] = None):
        self.faces = faces or []
        self.scan_calls = 0
        self.analyze_calls = 0
        self.fail = False

    def scan(self, image, score_threshold, input_size=416):
        self.scan_calls += 1
        if self.fail:
            raise RuntimeError("model crashed")
        return [face.box for face in self.faces]

    def analyze(self, image, min_confidence, max_results=20):
        self.analyze_calls += 1
        return list(self.faces)


class FakeCamera:
    """Frame source that is ready after `warmup` reads."""

    def __init__(self, warmup: int = 0, fail_open: bool = False):
        self.warmup = warmup
        self.fail_open = fail_open
        self.opened = False
        self.released = 0
        self.reads = 0

    def open(self):
        from errors import CaptureFailure
        if self.fail_open:
            raise CaptureFailure("Permission denied")
        self.opened = True

    def read(self):
        self.reads += 1
        if self.reads <= self.warmup:
            return None
        return make_frame()

    def release(self):
        self.opened = False
        self.released += 1


class StepClock:
    """Millisecond clock advancing a fixed step on every call."""

    def __init__(self, step: float = 0, start: float = 0):
        self._counter = itertools.count(start, step) if step else itertools.repeat(start)

    def __call__(self):
        return next(self._counter)


@pytest_asyncio.fixture
async def store(tmp_path):
    store = await SurveillanceStore.open(f"sqlite:///{tmp_path / 'surveillance.db'}")
    yield store
    store.close()


@pytest_asyncio.fixture
async def registry(store):
    registry = KnownFaceRegistry(store)
    await registry.load()
    return registry


@pytest_asyncio.fixture
async def settings(store):
    settings = SettingsManager(store)
    await settings.load()
    return settings


@pytest.fixture
def notifications(store):
    return NotificationCenter(store)


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def make_pipeline(store, registry, settings, notifications, analyzer):
    def _make(**kwargs):
        kwargs.setdefault("camera_factory", FakeCamera)
        return DetectionPipeline(store, registry, settings, analyzer, notifications, **kwargs)
    return _make
