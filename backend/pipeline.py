"""
Real-time detection pipeline.

One asyncio task drives the loop: capture a frame, run the two-stage face
analysis, then filter, match, throttle and record each face. Blocking camera
and model calls run in worker threads but are awaited in sequence, so the
throttle map and recent lists are only ever touched from this one flow.
"""
import asyncio
import logging
import time
import uuid
from collections import deque
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Tuple

from camera_manager import CameraStream
from config import MAX_RESULTS, RECENT_LIMIT, SCAN_INPUT_SIZE
from database import SurveillanceStore
from distance import estimate_distance
from errors import AnalysisFailure, CaptureFailure, NotInitialized, PersistenceFailure, SurveillanceError
from faces import FaceDetection, Frame
from imaging import BoxAnnotation, capture_thumbnails
from matcher import MatchResult
from notifications import NotificationCenter
from registry import KnownFaceRegistry
from schemas import Collection, DetectionRecord, DetectionSettings, Expression, utcnow
from settings_manager import SettingsManager
from throttle import DetectionThrottle, UnknownKeyPolicy, identity_key, scan_interval

logger = logging.getLogger("surveillance.pipeline")


class PipelineState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"
    FILTERING = "filtering"
    THROTTLING = "throttling"
    RECORDING = "recording"
    STOPPED = "stopped"


def dominant_expression(expressions: Dict[str, float]) -> Tuple[Expression, float]:
    """Highest-scoring expression; neutral with zero confidence when none were scored."""
    if not expressions:
        return Expression.NEUTRAL, 0.0
    label = max(expressions, key=expressions.get)
    try:
        expression = Expression(label)
    except ValueError:
        expression = Expression.NEUTRAL
    confidence = min(1.0, max(0.0, float(expressions[label])))
    return expression, round(confidence, 2)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class DetectionPipeline:
    """Turns raw face detections into throttled, persisted detection records."""

    def __init__(
        self,
        store: SurveillanceStore,
        registry: KnownFaceRegistry,
        settings: SettingsManager,
        analyzer,
        notifications: NotificationCenter,
        camera_factory: Optional[Callable[[], CameraStream]] = None,
        drawing_sink: Optional[Callable] = None,
        clock: Callable[[], float] = _monotonic_ms,
        unknown_key_policy: UnknownKeyPolicy = UnknownKeyPolicy.SHARED,
        limit: int = RECENT_LIMIT,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings
        self.analyzer = analyzer
        self.notifications = notifications
        self.camera_factory = camera_factory
        self.drawing_sink = drawing_sink
        self.clock = clock
        self.unknown_key_policy = UnknownKeyPolicy(unknown_key_policy)

        self.throttle = DetectionThrottle()
        self.recent_detections: Deque[DetectionRecord] = deque(maxlen=limit)
        self.state = PipelineState.IDLE
        self.camera: Optional[CameraStream] = None
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def load_history(self) -> List[DetectionRecord]:
        """Seed the recent list with the newest stored detections."""
        stored = await self.store.get_all(Collection.DETECTIONS)
        stored.sort(key=lambda d: d.timestamp, reverse=True)
        self.recent_detections = deque(stored[:self.recent_detections.maxlen], maxlen=self.recent_detections.maxlen)
        return list(self.recent_detections)

    # Lifecycle

    async def start(self, camera: Optional[CameraStream] = None):
        """Acquire the camera and launch the detection loop, restarting if running."""
        await self.stop()

        if self.analyzer is None:
            raise NotInitialized("Face recognition models are not loaded")

        if camera is None:
            if self.camera_factory is None:
                raise CaptureFailure("No camera configured")
            camera = self.camera_factory()

        try:
            await asyncio.to_thread(camera.open)
        except CaptureFailure as e:
            self.state = PipelineState.STOPPED
            self.last_error = e.message
            logger.error("Error accessing camera: %s", e)
            raise

        self.camera = camera
        self.last_error = None
        self._stop_event = asyncio.Event()
        self.state = PipelineState.CAPTURING
        self._task = asyncio.create_task(self._run())
        logger.info("Starting face detection with settings: %s", self.settings.current.model_dump(exclude={"id"}))

    async def stop(self):
        """Stop the loop and release the camera. Safe from any state."""
        task, self._task = self._task, None
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            if task is not None and not task.done():
                await task
            elif task is not None and not task.cancelled() and task.exception() is not None:
                logger.error("Detection loop had failed: %s", task.exception())
        finally:
            self._release_camera()
            if self.state != PipelineState.IDLE or task is not None:
                self.state = PipelineState.STOPPED

    def _release_camera(self):
        camera, self.camera = self.camera, None
        if camera is not None:
            camera.release()

    async def _run(self):
        try:
            while not self._stop_event.is_set():
                try:
                    await self.run_cycle()
                except (CaptureFailure, NotInitialized):
                    raise
                except Exception as e:
                    # A faulty cycle is skipped; the camera keeps running
                    logger.exception("Detection cycle failed: %s", e)
                    self.last_error = getattr(e, "message", None) or str(e)
                await self._wait_for_next_tick()
        except CaptureFailure as e:
            logger.error("Camera failure, detection stopped: %s", e)
            self.last_error = e.message
        except SurveillanceError as e:
            logger.error("Detection loop stopped: %s", e)
            self.last_error = e.message
        finally:
            self._release_camera()
            self.state = PipelineState.STOPPED

    async def _wait_for_next_tick(self):
        delay = scan_interval(self.settings.current.scan_frequency) / 1000
        if delay <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # Cycle

    async def run_cycle(self) -> List[DetectionRecord]:
        """Capture and process one frame. Returns the records created."""
        if self.camera is None:
            raise CaptureFailure("Camera is not open")

        self.state = PipelineState.CAPTURING
        frame = await asyncio.to_thread(self.camera.read)
        if frame is None:
            return []  # Not ready yet

        settings = self.settings.current
        self.state = PipelineState.ANALYZING
        try:
            faces = await asyncio.to_thread(self.analyze_frame, frame, settings)
        except AnalysisFailure as e:
            logger.error("Detection error: %s", e)
            self.state = PipelineState.CAPTURING
            return []

        return await self.process_frame(frame, faces, settings)

    def analyze_frame(self, frame: Frame, settings: DetectionSettings) -> List[FaceDetection]:
        """Cheap presence scan first; the full analysis only runs when a face is present."""
        try:
            initial = self.analyzer.scan(
                frame.image,
                score_threshold=max(0.0, settings.min_confidence - 0.2),
                input_size=SCAN_INPUT_SIZE,
            )
            if not initial:
                return []
            return self.analyzer.analyze(
                frame.image,
                min_confidence=settings.min_confidence,
                max_results=MAX_RESULTS,
            )
        except Exception as e:
            raise AnalysisFailure(f"Face analysis failed: {e}") from e

    async def process_frame(
        self,
        frame: Frame,
        faces: List[FaceDetection],
        settings: Optional[DetectionSettings] = None,
    ) -> List[DetectionRecord]:
        """Filter, match, throttle and record each detected face."""
        settings = settings or self.settings.current
        matcher = self.registry.matcher()
        annotations = []
        records = []

        for face in faces:
            self.state = PipelineState.FILTERING
            face_size = face.box.size
            if face_size <= 0:
                continue
            distance = estimate_distance(face_size, frame.width)
            if distance > settings.detection_range_meters:
                continue

            match = matcher.find_best_match(face.descriptor)
            annotations.append(BoxAnnotation(face.box, f"{match.label} ({distance:.1f}m)", match.is_known))

            self.state = PipelineState.THROTTLING
            key = identity_key(match.label, face.box, frame.width, frame.height, self.unknown_key_policy)
            now = self.clock()
            if not self.throttle.should_process(key, now, settings.scan_frequency):
                continue
            self.throttle.record(key, now)

            self.state = PipelineState.RECORDING
            record = await self.record_detection(frame, face, match, distance)
            if record is not None:
                records.append(record)

        if self.drawing_sink is not None:
            self.drawing_sink(frame, annotations)

        self.state = PipelineState.CAPTURING if self.is_running else PipelineState.IDLE
        return records

    async def record_detection(
        self,
        frame: Frame,
        face: FaceDetection,
        match: MatchResult,
        distance: float,
    ) -> Optional[DetectionRecord]:
        """Persist a detection, then expose it in memory and derive its notification."""
        timestamp = utcnow()
        expression, expression_confidence = dominant_expression(face.expressions)
        face_thumbnail, context_image = capture_thumbnails(frame.image, face.box)

        record = DetectionRecord(
            id=f"face-{timestamp.isoformat()}-{uuid.uuid4().hex[:8]}",
            timestamp=timestamp,
            confidence=round(min(1.0, max(0.0, float(face.score))), 2),
            dominant_expression=expression,
            expression_confidence=expression_confidence,
            face_thumbnail=face_thumbnail,
            context_image=context_image,
            person_name=match.label,
            is_known=match.is_known,
            estimated_distance_meters=round(distance, 1),
            person_details=match.face.details() if match.is_known else None,
            face_descriptor=face.descriptor,
        )

        try:
            await self.store.put(Collection.DETECTIONS, record)
        except PersistenceFailure as e:
            logger.error("Error storing detection: %s", e)
            return None

        self.recent_detections.appendleft(record)
        await self.notifications.publish(record)
        logger.info("Recorded %s at %.1fm", record.person_name, record.estimated_distance_meters)
        return record

    def status(self) -> Dict:
        return {
            "state": self.state.value,
            "running": self.is_running,
            "last_error": self.last_error,
            "recent_detections": len(self.recent_detections),
            "unread_notifications": self.notifications.unread_count,
            "known_faces": len(self.registry),
            "settings": self.settings.current.model_dump(exclude={"id"}),
        }
