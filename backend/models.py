"""
SQLAlchemy tables backing the four surveillance collections.

Each table is keyed by the record id. Face descriptors are stored as raw
float64 bytes so that a stored record reads back bit-for-bit.
"""
import numpy as np
from sqlalchemy import Column, String, DateTime, Boolean, Float, Integer, LargeBinary, Text, JSON
from sqlalchemy.orm import declarative_base

from schemas import (
    DetectionRecord, KnownFace as KnownFaceRecord, NotificationRecord, DetectionSettings, PersonDetails,
)

Base = declarative_base()


def pack_descriptor(values) -> bytes:
    return np.asarray(values, dtype=np.float64).tobytes()


def unpack_descriptor(blob: bytes) -> list:
    return np.frombuffer(blob, dtype=np.float64).tolist() if blob else []


class Detection(Base):
    """Every accepted face detection."""
    __tablename__ = "detections"

    id = Column(String, primary_key=True, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    confidence = Column(Float, nullable=False)
    dominant_expression = Column(String, nullable=False)
    expression_confidence = Column(Float, nullable=False)
    face_thumbnail = Column(Text, nullable=True)  # JPEG data URL
    context_image = Column(Text, nullable=True)
    person_name = Column(String, nullable=False, index=True)
    is_known = Column(Boolean, default=False, nullable=False)
    estimated_distance_meters = Column(Float, nullable=False)
    person_details = Column(JSON, nullable=True)  # Snapshot, not a reference
    face_descriptor = Column(LargeBinary, nullable=False)

    @classmethod
    def from_record(cls, record: DetectionRecord) -> "Detection":
        data = record.model_dump(mode="json", exclude={"timestamp", "face_descriptor"})
        return cls(**data, timestamp=record.timestamp, face_descriptor=pack_descriptor(record.face_descriptor))

    def to_record(self) -> DetectionRecord:
        return DetectionRecord(
            id=self.id,
            timestamp=self.timestamp,
            confidence=self.confidence,
            dominant_expression=self.dominant_expression,
            expression_confidence=self.expression_confidence,
            face_thumbnail=self.face_thumbnail,
            context_image=self.context_image,
            person_name=self.person_name,
            is_known=self.is_known,
            estimated_distance_meters=self.estimated_distance_meters,
            person_details=PersonDetails(**self.person_details) if self.person_details else None,
            face_descriptor=unpack_descriptor(self.face_descriptor),
        )


class KnownFace(Base):
    """Registered person with a reference descriptor."""
    __tablename__ = "known_faces"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False, default="")
    access_level = Column(String, nullable=False, default="standard")
    date_added = Column(DateTime, nullable=False)
    face_descriptor = Column(LargeBinary, nullable=False)
    thumbnail = Column(Text, nullable=True)

    @classmethod
    def from_record(cls, record: KnownFaceRecord) -> "KnownFace":
        return cls(
            id=record.id,
            name=record.name,
            role=record.role,
            access_level=record.access_level.value,
            date_added=record.date_added,
            face_descriptor=pack_descriptor(record.face_descriptor),
            thumbnail=record.thumbnail,
        )

    def to_record(self) -> KnownFaceRecord:
        return KnownFaceRecord(
            id=self.id,
            name=self.name,
            role=self.role,
            access_level=self.access_level,
            date_added=self.date_added,
            face_descriptor=unpack_descriptor(self.face_descriptor),
            thumbnail=self.thumbnail,
        )


class Notification(Base):
    """Alert derived from a detection; lives independently of it."""
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False, index=True)
    thumbnail = Column(Text, nullable=True)
    context_image = Column(Text, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    type = Column(String, nullable=False)
    detection_id = Column(String, nullable=False, index=True)  # Lookup only, no FK
    person_name = Column(String, nullable=False)
    is_known = Column(Boolean, default=False, nullable=False)
    estimated_distance_meters = Column(Float, nullable=False)

    @classmethod
    def from_record(cls, record: NotificationRecord) -> "Notification":
        data = record.model_dump(mode="json", exclude={"timestamp"})
        return cls(**data, timestamp=record.timestamp)

    def to_record(self) -> NotificationRecord:
        return NotificationRecord(
            id=self.id,
            title=self.title,
            message=self.message,
            timestamp=self.timestamp,
            thumbnail=self.thumbnail,
            context_image=self.context_image,
            is_read=self.is_read,
            type=self.type,
            detection_id=self.detection_id,
            person_name=self.person_name,
            is_known=self.is_known,
            estimated_distance_meters=self.estimated_distance_meters,
        )


class Setting(Base):
    """Detection settings; a single row under a fixed id."""
    __tablename__ = "settings"

    id = Column(String, primary_key=True, index=True)
    detection_range_meters = Column(Float, nullable=False)
    min_confidence = Column(Float, nullable=False)
    scan_frequency = Column(String, nullable=False)

    @classmethod
    def from_record(cls, record: DetectionSettings) -> "Setting":
        return cls(**record.model_dump(mode="json"))

    def to_record(self) -> DetectionSettings:
        return DetectionSettings(
            id=self.id,
            detection_range_meters=self.detection_range_meters,
            min_confidence=self.min_confidence,
            scan_frequency=self.scan_frequency,
        )


class StoreMeta(Base):
    """Key/value bookkeeping for schema migrations."""
    __tablename__ = "store_meta"

    key = Column(String, primary_key=True)
    value = Column(Integer, nullable=False)
