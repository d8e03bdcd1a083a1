"""
In-memory view of the knownFaces collection, kept in sync on every change.
"""
import logging
import time
from typing import List, Optional, Sequence

from database import SurveillanceStore
from errors import InvalidInput
from matcher import FaceMatcher, MatchResult
from schemas import AccessLevel, Collection, DetectionRecord, KnownFace, UNKNOWN_LABEL, utcnow

logger = logging.getLogger("surveillance.registry")


class KnownFaceRegistry:
    """Known persons used for matching. The store is written before memory."""

    def __init__(self, store: SurveillanceStore):
        self.store = store
        self._faces: List[KnownFace] = []
        self._matcher: Optional[FaceMatcher] = None

    async def load(self) -> List[KnownFace]:
        self._faces = list(await self.store.get_all(Collection.KNOWN_FACES))
        self._matcher = None
        logger.info("Faces in database: %d", len(self._faces))
        return self.list()

    def list(self) -> List[KnownFace]:
        return list(self._faces)

    def __len__(self):
        return len(self._faces)

    def find_by_name(self, name: str) -> Optional[KnownFace]:
        return next((face for face in self._faces if face.name == name), None)

    def get(self, face_id: str) -> Optional[KnownFace]:
        return next((face for face in self._faces if face.id == face_id), None)

    def matcher(self) -> FaceMatcher:
        if self._matcher is None:
            self._matcher = FaceMatcher(self._faces)
        return self._matcher

    def match(self, descriptor: Sequence[float]) -> MatchResult:
        return self.matcher().find_best_match(descriptor)

    def _next_id(self) -> str:
        stamp = int(time.time() * 1000)
        taken = {face.id for face in self._faces}
        while f"person-{stamp}" in taken:
            stamp += 1
        return f"person-{stamp}"

    async def add(
        self,
        name: str,
        face_descriptor: Optional[Sequence[float]],
        role: str = "",
        access_level: AccessLevel = AccessLevel.STANDARD,
        thumbnail: Optional[str] = None,
    ) -> KnownFace:
        """Register a new person. Name and descriptor are required."""
        if not name or not name.strip():
            raise InvalidInput("Name is required")
        if name.strip().lower() == UNKNOWN_LABEL:
            raise InvalidInput(f"\"{UNKNOWN_LABEL}\" is reserved for unmatched faces")
        if face_descriptor is None or len(face_descriptor) == 0:
            raise InvalidInput("Face descriptor is required")

        try:
            face = KnownFace(
                id=self._next_id(),
                name=name.strip(),
                role=role or "",
                access_level=access_level,
                date_added=utcnow(),
                face_descriptor=face_descriptor,
                thumbnail=thumbnail,
            )
        except ValueError as e:
            raise InvalidInput(f"Invalid known face: {e}")

        await self.store.put(Collection.KNOWN_FACES, face)
        self._faces.append(face)
        self._matcher = None
        logger.info("Added known face %s (%s)", face.name, face.id)
        return face

    async def add_from_detection(
        self,
        detection_id: str,
        name: str,
        role: str = "",
        access_level: AccessLevel = AccessLevel.STANDARD,
    ) -> KnownFace:
        """Register the person seen in a stored detection."""
        detection: Optional[DetectionRecord] = await self.store.get_by_id(Collection.DETECTIONS, detection_id)
        if detection is None:
            raise InvalidInput(f"Detection {detection_id} not found")
        return await self.add(
            name,
            detection.face_descriptor,
            role=role,
            access_level=access_level,
            thumbnail=detection.face_thumbnail,
        )

    async def remove(self, face_id: str) -> bool:
        """Delete a person. Returns False if the id was not registered."""
        await self.store.delete(Collection.KNOWN_FACES, face_id)
        before = len(self._faces)
        self._faces = [face for face in self._faces if face.id != face_id]
        self._matcher = None
        removed = len(self._faces) < before
        if removed:
            logger.info("Removed known face %s", face_id)
        return removed

    async def clear(self):
        await self.store.clear(Collection.KNOWN_FACES)
        self._faces = []
        self._matcher = None
        logger.info("Known face database reset")
