"""
Nearest-neighbour face matching against the known-face registry.
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from config import FACE_MATCH_THRESHOLD
from schemas import KnownFace, UNKNOWN_LABEL

logger = logging.getLogger("surveillance.matcher")


@dataclass
class MatchResult:
    label: str
    distance: float
    face: Optional[KnownFace] = None

    @property
    def is_known(self) -> bool:
        return self.face is not None and self.label != UNKNOWN_LABEL


class FaceMatcher:
    """
    Matches a descriptor to the closest known face by Euclidean distance.

    A match is accepted only below the threshold. On exact ties the face
    registered first wins.
    """

    def __init__(self, known_faces: Iterable[KnownFace], threshold: float = FACE_MATCH_THRESHOLD):
        self.threshold = threshold
        self.known = [
            (face, np.asarray(face.face_descriptor, dtype=np.float64)) for face in known_faces
        ]

    def __len__(self):
        return len(self.known)

    @staticmethod
    def euclidean_distance(desc1: np.ndarray, desc2: np.ndarray) -> float:
        return float(np.linalg.norm(desc1 - desc2))

    def find_best_match(self, descriptor: Sequence[float]) -> MatchResult:
        query = np.asarray(descriptor, dtype=np.float64)

        best_match = None
        best_distance = math.inf

        for face, stored in self.known:
            if stored.shape != query.shape:
                logger.debug("Skipping %s: descriptor size %d != %d", face.id, stored.size, query.size)
                continue
            distance = self.euclidean_distance(query, stored)
            if distance < best_distance:
                best_distance = distance
                best_match = face

        if best_match is not None and best_distance < self.threshold:
            return MatchResult(label=best_match.name, distance=best_distance, face=best_match)
        return MatchResult(label=UNKNOWN_LABEL, distance=best_distance)
