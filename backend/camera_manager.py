import logging
import time
from enum import Enum
from typing import List, Optional

import cv2

from errors import CaptureFailure
from faces import Frame

logger = logging.getLogger("surveillance.camera")

MAX_MISSED_FRAMES = 30


class CameraType(str, Enum):
    WEBCAM = "webcam"
    RTSP = "rtsp"
    HTTP = "http"
    FILE = "file"


class CameraStream:
    """
    Single camera frame source owned by the detection pipeline.
    Supports webcams, RTSP streams, HTTP/IP cameras, and video files.
    """

    def __init__(self, source: str, camera_type: CameraType = CameraType.WEBCAM,
                 width: int = 1280, height: int = 720, fps: int = 30):
        self.source = source
        self.camera_type = CameraType(camera_type)
        self.requested = (width, height, fps)
        self.capture: Optional[cv2.VideoCapture] = None
        self.frame_count = 0
        self.missed = 0

    @property
    def is_open(self) -> bool:
        return self.capture is not None

    def _create_capture(self) -> cv2.VideoCapture:
        width, height, fps = self.requested

        if self.camera_type == CameraType.WEBCAM:
            cap = cv2.VideoCapture(int(self.source))
            # Higher resolution helps with distant faces
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            cap.set(cv2.CAP_PROP_FPS, fps)
        elif self.camera_type == CameraType.RTSP:
            cap = cv2.VideoCapture(self.source, cv2.CAP_FFMPEG)
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # Minimal buffer for low latency
            cap.set(cv2.CAP_PROP_FPS, fps)
        else:
            cap = cv2.VideoCapture(self.source)
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        return cap

    def open(self):
        """Acquire the camera. Raises CaptureFailure if it cannot deliver a frame."""
        if self.is_open:
            self.release()

        try:
            cap = self._create_capture()
        except (ValueError, cv2.error) as e:
            raise CaptureFailure(f"Failed to access camera {self.source}: {e}")

        if not cap.isOpened():
            cap.release()
            raise CaptureFailure(f"Failed to open camera source: {self.source}")

        ret, frame = cap.read()
        if not ret or frame is None:
            cap.release()
            raise CaptureFailure(f"Failed to read test frame from {self.source}")

        self.capture = cap
        self.frame_count = 1
        self.missed = 0
        height, width = frame.shape[:2]
        logger.info("✓ Camera %s opened: %dx%d", self.source, width, height)

    def read(self) -> Optional[Frame]:
        """
        Get the current frame.

        Returns:
            Frame, or None when the stream is not ready yet

        Raises:
            CaptureFailure: the camera is closed or has stopped delivering frames
        """
        if self.capture is None:
            raise CaptureFailure("Camera is not open")

        cap = self.capture
        if self.camera_type in (CameraType.RTSP, CameraType.HTTP):
            # Skip buffered frames to get the latest
            for _ in range(5):
                if not cap.grab():
                    break
            ret, image = cap.retrieve()
        else:
            ret, image = cap.read()

        if not ret or image is None:
            self.missed += 1
            if self.missed > MAX_MISSED_FRAMES:
                raise CaptureFailure(f"Camera {self.source} stopped delivering frames")
            return None

        self.missed = 0
        self.frame_count += 1
        return Frame.from_image(image)

    def release(self):
        """Release the camera handle. Safe to call repeatedly."""
        if self.capture is not None:
            self.capture.release()
            self.capture = None
            logger.info("✓ Camera %s released", self.source)

    @staticmethod
    def discover_webcams() -> List[int]:
        """
        Discover available webcam indices.
        Returns list of available camera indices.
        """
        available = []
        for i in range(10):  # Check first 10 indices
            cap = cv2.VideoCapture(i)
            if cap.isOpened():
                available.append(i)
                cap.release()
        return available

    @staticmethod
    def test_connection(url: str, timeout: int = 5) -> bool:
        """Check whether a stream URL delivers a frame within the timeout."""
        cap = cv2.VideoCapture(url)
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        try:
            start_time = time.time()
            while time.time() - start_time < timeout:
                ret, _ = cap.read()
                if ret:
                    return True
                time.sleep(0.1)
            return False
        finally:
            cap.release()
