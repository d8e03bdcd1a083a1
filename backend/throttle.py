"""
Per-identity rate limiting of detection records.
"""
from enum import Enum
from typing import Dict, Optional

from faces import FaceBox
from schemas import ScanFrequency, UNKNOWN_LABEL

# Minimum gap between two records of the same identity
DETECTION_TIME_THRESHOLDS_MS = {
    ScanFrequency.LOW: 5000,
    ScanFrequency.MEDIUM: 2000,
    ScanFrequency.HIGH: 1000,
}

# Delay between detection attempts
SCAN_INTERVALS_MS = {
    ScanFrequency.LOW: 300,    # ~3 FPS
    ScanFrequency.MEDIUM: 150,  # ~7 FPS
    ScanFrequency.HIGH: 0,     # Full speed
}

REGION_GRID = 8


class UnknownKeyPolicy(str, Enum):
    SHARED = "shared"  # All unknown faces share one throttle window
    REGION = "region"  # One window per grid cell of the frame


def detection_time_threshold(scan_frequency) -> int:
    try:
        return DETECTION_TIME_THRESHOLDS_MS[ScanFrequency(scan_frequency)]
    except ValueError:
        return DETECTION_TIME_THRESHOLDS_MS[ScanFrequency.MEDIUM]


def scan_interval(scan_frequency) -> int:
    try:
        return SCAN_INTERVALS_MS[ScanFrequency(scan_frequency)]
    except ValueError:
        return 0


def identity_key(label: str, box: FaceBox, frame_width: float, frame_height: float,
                 policy: UnknownKeyPolicy = UnknownKeyPolicy.SHARED) -> str:
    """Throttle key: the person's name, or a key for unknown faces."""
    if label != UNKNOWN_LABEL:
        return label
    if policy == UnknownKeyPolicy.REGION and frame_width > 0 and frame_height > 0:
        cx, cy = box.center
        col = min(REGION_GRID - 1, max(0, int(cx / frame_width * REGION_GRID)))
        row = min(REGION_GRID - 1, max(0, int(cy / frame_height * REGION_GRID)))
        return f"{UNKNOWN_LABEL}@{col}:{row}"
    return UNKNOWN_LABEL


class DetectionThrottle:
    """
    Last-processed instant per identity key, in milliseconds.

    should_process() only reads; the caller records the instant once it
    decides to process the detection.
    """

    def __init__(self):
        self._last_processed: Dict[str, float] = {}

    def should_process(self, key: str, now: float, scan_frequency) -> bool:
        last = self._last_processed.get(key)
        if last is None:
            return True
        return now - last > detection_time_threshold(scan_frequency)

    def record(self, key: str, now: float):
        self._last_processed[key] = now

    def last_processed(self, key: str) -> Optional[float]:
        return self._last_processed.get(key)

    def reset(self):
        self._last_processed.clear()
