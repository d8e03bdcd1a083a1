"""
Value types exchanged between the camera, the detection capability and the pipeline.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np


@dataclass
class Frame:
    """A captured BGR frame with its pixel dimensions."""
    image: np.ndarray
    width: int
    height: int

    @classmethod
    def from_image(cls, image: np.ndarray) -> "Frame":
        height, width = image.shape[:2]
        return cls(image=image, width=width, height=height)


@dataclass
class FaceBox:
    """Axis-aligned face box in frame pixels, [x, y, w, h] form."""
    x: float
    y: float
    width: float
    height: float
    score: float = 0.0

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float, score: float = 0.0) -> "FaceBox":
        return cls(x=float(x1), y=float(y1), width=float(x2 - x1), height=float(y2 - y1), score=float(score))

    @property
    def size(self) -> float:
        return max(self.width, self.height)

    @property
    def center(self):
        return (self.x + self.width / 2, self.y + self.height / 2)

    def as_int_list(self) -> List[int]:
        return [int(self.x), int(self.y), int(self.width), int(self.height)]


@dataclass
class FaceDetection:
    """One detailed detection: box, confidence, descriptor and expression scores."""
    box: FaceBox
    score: float
    descriptor: Sequence[float]
    expressions: Dict[str, float] = field(default_factory=dict)
    landmarks: List[List[float]] = field(default_factory=list)
