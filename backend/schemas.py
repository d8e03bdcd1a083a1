"""
Pydantic records stored in the four collections.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UNKNOWN_LABEL = "unknown"
SETTINGS_ID = "detectionSettings"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite stores and returns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Collection(str, Enum):
    DETECTIONS = "detections"
    KNOWN_FACES = "knownFaces"
    NOTIFICATIONS = "notifications"
    SETTINGS = "settings"


class AccessLevel(str, Enum):
    STANDARD = "standard"
    RESTRICTED = "restricted"
    ADMIN = "admin"
    SECURITY = "security"


class ScanFrequency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"


class Expression(str, Enum):
    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    FEARFUL = "fearful"
    DISGUSTED = "disgusted"
    SURPRISED = "surprised"


def _descriptor_to_list(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.astype(np.float64).tolist()
    if isinstance(value, tuple):
        return list(value)
    return value


class PersonDetails(BaseModel):
    """Snapshot of a known face taken at detection time."""
    name: str
    role: str = ""
    access_level: AccessLevel = AccessLevel.STANDARD


class KnownFace(BaseModel):
    id: str
    name: str = Field(min_length=1)
    role: str = ""
    access_level: AccessLevel = AccessLevel.STANDARD
    date_added: datetime = Field(default_factory=utcnow)
    face_descriptor: List[float] = Field(min_length=1)
    thumbnail: Optional[str] = None

    @field_validator("face_descriptor", mode="before")
    @classmethod
    def coerce_descriptor(cls, value):
        return _descriptor_to_list(value)

    def details(self) -> PersonDetails:
        return PersonDetails(name=self.name, role=self.role, access_level=self.access_level)


class DetectionRecord(BaseModel):
    id: str
    timestamp: datetime
    confidence: float = Field(ge=0, le=1)
    dominant_expression: Expression = Expression.NEUTRAL
    expression_confidence: float = Field(default=0.0, ge=0, le=1)
    face_thumbnail: Optional[str] = None
    context_image: Optional[str] = None
    person_name: str = UNKNOWN_LABEL
    is_known: bool = False
    estimated_distance_meters: float = Field(ge=0.5)
    person_details: Optional[PersonDetails] = None
    face_descriptor: List[float] = Field(default_factory=list)

    @field_validator("face_descriptor", mode="before")
    @classmethod
    def coerce_descriptor(cls, value):
        return _descriptor_to_list(value)

    @model_validator(mode="after")
    def check_identity(self):
        named = self.person_name != UNKNOWN_LABEL
        if not (self.is_known == named == (self.person_details is not None)):
            raise ValueError("is_known, person_name and person_details disagree")
        return self


class NotificationRecord(BaseModel):
    id: str
    title: str
    message: str
    timestamp: datetime
    thumbnail: Optional[str] = None
    context_image: Optional[str] = None
    is_read: bool = False
    type: NotificationType = NotificationType.INFO
    detection_id: str
    person_name: str = UNKNOWN_LABEL
    is_known: bool = False
    estimated_distance_meters: float = 0.0


class DetectionSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = SETTINGS_ID
    detection_range_meters: float = Field(default=5.0, ge=1, le=10, multiple_of=0.5)
    min_confidence: float = Field(default=0.3, ge=0.1, le=0.9)
    scan_frequency: ScanFrequency = ScanFrequency.HIGH


# Request models

class AddKnownFaceRequest(BaseModel):
    name: str
    role: str = ""
    access_level: AccessLevel = AccessLevel.STANDARD
    face_descriptor: Optional[List[float]] = None
    thumbnail: Optional[str] = None


class AddFromDetectionRequest(BaseModel):
    detection_id: str
    name: str
    role: str = ""
    access_level: AccessLevel = AccessLevel.STANDARD


class SettingsUpdateRequest(BaseModel):
    detection_range_meters: Optional[float] = None
    min_confidence: Optional[float] = None
    scan_frequency: Optional[ScanFrequency] = None
