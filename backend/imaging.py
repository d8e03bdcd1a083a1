"""
Thumbnail capture and box overlays for detected faces.
"""
import base64
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from faces import FaceBox, Frame

logger = logging.getLogger("surveillance.imaging")

FACE_MARGIN = 0.2        # Margin around the face, relative to its larger side
THUMBNAIL_SCALE = 0.5
CONTEXT_SCALE = 0.25
FACE_QUALITY = 60
CONTEXT_QUALITY = 40

KNOWN_COLOR = (69, 167, 40)    # BGR of #28a745
UNKNOWN_COLOR = (0, 0, 255)


def encode_data_url(image: np.ndarray, quality: int = 90) -> Optional[str]:
    """Encode a BGR image as a JPEG data URL."""
    success, buffer = cv2.imencode('.jpg', image, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not success:
        return None
    img_b64 = base64.b64encode(buffer.tobytes()).decode('utf-8')
    return f"data:image/jpeg;base64,{img_b64}"


def _resize(image: np.ndarray, scale: float) -> np.ndarray:
    height, width = image.shape[:2]
    size = (max(1, int(width * scale)), max(1, int(height * scale)))
    return cv2.resize(image, size, interpolation=cv2.INTER_AREA)


def capture_thumbnails(image: np.ndarray, box: FaceBox) -> Tuple[Optional[str], Optional[str]]:
    """
    Build a face close-up and a downscaled context image with the face highlighted.

    Returns:
        (face_thumbnail, context_image) as JPEG data URLs; (None, None) on failure
    """
    try:
        img_h, img_w = image.shape[:2]
        margin = max(box.width, box.height) * FACE_MARGIN

        x1 = int(max(0, box.x - margin))
        y1 = int(max(0, box.y - margin))
        x2 = int(min(img_w, box.x + box.width + margin))
        y2 = int(min(img_h, box.y + box.height + margin))
        if x2 <= x1 or y2 <= y1:
            return None, None

        face = _resize(image[y1:y2, x1:x2], THUMBNAIL_SCALE)

        context = _resize(image, CONTEXT_SCALE)
        cv2.rectangle(
            context,
            (int(box.x * CONTEXT_SCALE), int(box.y * CONTEXT_SCALE)),
            (int((box.x + box.width) * CONTEXT_SCALE), int((box.y + box.height) * CONTEXT_SCALE)),
            KNOWN_COLOR,
            3,
        )

        return encode_data_url(face, FACE_QUALITY), encode_data_url(context, CONTEXT_QUALITY)
    except cv2.error as e:
        logger.error("Error capturing thumbnail: %s", e)
        return None, None


@dataclass
class BoxAnnotation:
    box: FaceBox
    label: str
    known: bool


class FrameAnnotator:
    """Drawing sink: keeps the latest frame with labelled face boxes."""

    def __init__(self):
        self.latest: Optional[np.ndarray] = None

    def __call__(self, frame: Frame, annotations: List[BoxAnnotation]):
        canvas = frame.image.copy()
        for annotation in annotations:
            x, y, w, h = annotation.box.as_int_list()
            color = KNOWN_COLOR if annotation.known else UNKNOWN_COLOR
            cv2.rectangle(canvas, (x, y), (x + w, y + h), color, 2)
            cv2.putText(canvas, annotation.label, (x, max(0, y - 8)),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)
        self.latest = canvas

    def latest_jpeg(self, quality: int = 90) -> Optional[bytes]:
        if self.latest is None:
            return None
        success, buffer = cv2.imencode('.jpg', self.latest, [cv2.IMWRITE_JPEG_QUALITY, quality])
        return buffer.tobytes() if success else None
