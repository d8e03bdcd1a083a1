import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from camera_manager import CameraStream, CameraType
from config import (
    ALERT_PHONE, CAMERA_FPS, CAMERA_HEIGHT, CAMERA_SOURCE, CAMERA_TYPE, CAMERA_WIDTH, DATABASE_URL,
    DETECTION_SIZE, LOG_FILE, LOG_LEVEL, MODEL_NAME, SMS_API_PASSWORD, SMS_BASE_URL, SMS_E_ID,
    SMS_PRIORITY, SMS_SENDER, SMS_T_ID, SMS_USERNAME, UNKNOWN_THROTTLE_POLICY, USE_GPU,
)
from database import SurveillanceStore
from errors import CaptureFailure, InvalidInput, NotInitialized, PersistenceFailure
from imaging import FrameAnnotator
from logger_helper import create_logging_middleware, setup_logger
from notifications import NotificationCenter, SmsNotifier
from pipeline import DetectionPipeline
from registry import KnownFaceRegistry
from schemas import (
    AddFromDetectionRequest, AddKnownFaceRequest, Collection, SettingsUpdateRequest,
)
from settings_manager import SettingsManager

logger = logging.getLogger("surveillance.api")


def load_analyzer():
    """Load the face models, falling back to CPU if GPU initialization fails."""
    from recognition import FaceAnalyzer

    det_size = (DETECTION_SIZE, DETECTION_SIZE)
    try:
        return FaceAnalyzer(model_name=MODEL_NAME, det_size=det_size, use_gpu=USE_GPU)
    except RuntimeError as e:
        if not USE_GPU:
            raise
        logger.warning("GPU initialization failed: %s. Falling back to CPU...", e)
        return FaceAnalyzer(model_name=MODEL_NAME, det_size=det_size, use_gpu=False)


def open_camera(source: Optional[str] = None, camera_type: Optional[str] = None) -> CameraStream:
    return CameraStream(
        source or CAMERA_SOURCE,
        CameraType(camera_type or CAMERA_TYPE),
        width=CAMERA_WIDTH,
        height=CAMERA_HEIGHT,
        fps=CAMERA_FPS,
    )


def create_delivery() -> Optional[SmsNotifier]:
    if not SMS_USERNAME or not ALERT_PHONE:
        return None
    return SmsNotifier(
        SMS_BASE_URL, SMS_USERNAME, SMS_API_PASSWORD,
        sender=SMS_SENDER, priority=SMS_PRIORITY, e_id=SMS_E_ID, t_id=SMS_T_ID,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup."""
    setup_logger(LOG_FILE, LOG_LEVEL)

    # Fatal if the store cannot be opened
    store = await SurveillanceStore.open(DATABASE_URL)
    logger.info("✓ Database initialized")

    registry = KnownFaceRegistry(store)
    settings = SettingsManager(store)
    delivery = create_delivery()
    notifications = NotificationCenter(store, delivery=delivery, recipient=ALERT_PHONE)
    await registry.load()
    await settings.load()
    await notifications.load()

    # Model failures block detection but leave the rest of the API usable
    analyzer = None
    app.state.model_error = None
    try:
        analyzer = load_analyzer()
        logger.info("✓ Face models loaded")
    except Exception as e:
        app.state.model_error = f"Failed to load face recognition models: {e}"
        logger.error(app.state.model_error)

    annotator = FrameAnnotator()
    pipeline = DetectionPipeline(
        store, registry, settings, analyzer, notifications,
        camera_factory=open_camera,
        drawing_sink=annotator,
        unknown_key_policy=UNKNOWN_THROTTLE_POLICY,
    )
    await pipeline.load_history()

    app.state.store = store
    app.state.registry = registry
    app.state.settings = settings
    app.state.notifications = notifications
    app.state.annotator = annotator
    app.state.pipeline = pipeline

    yield

    # Cleanup
    await pipeline.stop()
    if delivery is not None:
        await delivery.aclose()
    store.close()
    logger.info("Shutting down...")


app = FastAPI(
    title="Face Surveillance",
    description="Face detection surveillance with known-person matching and distance filtering",
    version="1.0.0",
    lifespan=lifespan
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Demo only - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

create_logging_middleware(app, logging.getLogger("surveillance.requests"))


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint with model and storage info."""
    state = request.app.state
    try:
        stored = await state.store.count(Collection.DETECTIONS)
    except PersistenceFailure as e:
        logger.error("Health check could not read the store: %s", e)
        stored = None
    return {
        "status": "running",
        "models_loaded": state.pipeline.analyzer is not None,
        "model_error": state.model_error,
        "detection": state.pipeline.state.value,
        "stored_detections": stored,
        "known_faces": len(state.registry),
    }

# Detection Endpoints

@app.post("/detection/start")
async def start_detection(
    request: Request,
    source: Optional[str] = Form(None),
    camera_type: Optional[str] = Form(None),
):
    """Start (or restart) surveillance on the configured camera."""
    state = request.app.state
    if state.pipeline.analyzer is None:
        raise HTTPException(status_code=503, detail=state.model_error or "Models not loaded")

    try:
        camera = open_camera(source, camera_type)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid camera type: {camera_type}")

    try:
        await state.pipeline.start(camera)
    except CaptureFailure as e:
        raise HTTPException(status_code=503, detail=e.user_message)
    except NotInitialized as e:
        raise HTTPException(status_code=503, detail=e.user_message)

    return {"message": "Detection started", "status": state.pipeline.status()}


@app.post("/detection/stop")
async def stop_detection(request: Request):
    """Stop surveillance and release the camera."""
    state = request.app.state
    await state.pipeline.stop()
    try:
        await state.settings.save()
    except PersistenceFailure as e:
        logger.error("Error saving settings: %s", e)
    return {"message": "Detection stopped", "status": state.pipeline.status()}


@app.get("/detection/status")
async def detection_status(request: Request):
    return request.app.state.pipeline.status()


@app.get("/detection/frame")
async def latest_frame(request: Request):
    """Latest frame with face boxes drawn."""
    jpeg = request.app.state.annotator.latest_jpeg()
    if jpeg is None:
        raise HTTPException(status_code=404, detail="No frame processed yet")
    return Response(
        content=jpeg,
        media_type="image/jpeg",
        headers={"Cache-Control": "no-store, must-revalidate", "Pragma": "no-cache", "Expires": "0"},
    )


@app.get("/detections")
async def recent_detections(request: Request):
    """Most recent detections, newest first."""
    detections = list(request.app.state.pipeline.recent_detections)
    return {"detections": detections, "count": len(detections)}


@app.get("/detections/history")
async def detection_history(request: Request, limit: int = 50):
    """Stored detections, newest first."""
    detections = await request.app.state.store.get_all(Collection.DETECTIONS)
    detections.sort(key=lambda d: d.timestamp, reverse=True)
    return {"detections": detections[:limit], "total": len(detections)}


@app.get("/detections/{detection_id}")
async def get_detection(request: Request, detection_id: str):
    detection = await request.app.state.store.get_by_id(Collection.DETECTIONS, detection_id)
    if detection is None:
        raise HTTPException(status_code=404, detail="Detection not found")
    return detection

# Notification Endpoints

@app.get("/notifications")
async def list_notifications(request: Request):
    notifications = request.app.state.notifications
    return {"notifications": notifications.list(), "unread": notifications.unread_count}


@app.post("/notifications/{notification_id}/read")
async def mark_notification_read(request: Request, notification_id: str):
    if not await request.app.state.notifications.mark_read(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification marked as read"}


@app.delete("/notifications")
async def clear_notifications(request: Request):
    await request.app.state.notifications.clear()
    return {"message": "All notifications cleared"}

# Known Face Endpoints

@app.get("/known-faces")
async def list_known_faces(request: Request):
    faces = request.app.state.registry.list()
    return {"known_faces": faces, "count": len(faces)}


@app.post("/known-faces")
async def add_known_face(request: Request, body: AddKnownFaceRequest):
    """Register a person from a descriptor."""
    try:
        face = await request.app.state.registry.add(
            body.name, body.face_descriptor,
            role=body.role, access_level=body.access_level, thumbnail=body.thumbnail,
        )
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=e.user_message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=f"Failed to save person: {e.user_message}")
    return {"message": "Person added successfully", "known_face": face}


@app.post("/known-faces/from-detection")
async def add_known_face_from_detection(request: Request, body: AddFromDetectionRequest):
    """Register the person seen in a stored detection."""
    try:
        face = await request.app.state.registry.add_from_detection(
            body.detection_id, body.name, role=body.role, access_level=body.access_level,
        )
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=e.user_message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=f"Failed to save person: {e.user_message}")
    return {"message": "Person added successfully", "known_face": face}


@app.delete("/known-faces/{face_id}")
async def remove_known_face(request: Request, face_id: str):
    if not await request.app.state.registry.remove(face_id):
        raise HTTPException(status_code=404, detail="Known face not found")
    return {"message": "Known face deleted"}


@app.delete("/known-faces")
async def reset_known_faces(request: Request):
    await request.app.state.registry.clear()
    return {"message": "All known faces deleted"}

# Settings Endpoints

@app.get("/settings")
async def get_settings(request: Request):
    return request.app.state.settings.current


@app.put("/settings")
async def update_settings(request: Request, body: SettingsUpdateRequest):
    """Change settings; they apply from the next detection cycle."""
    try:
        return await request.app.state.settings.update(**body.model_dump(exclude_none=True))
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=e.user_message)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
