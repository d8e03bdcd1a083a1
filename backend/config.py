"""
Runtime configuration, read once from environment variables.
"""
import os

# Storage
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./surveillance.db")

# Models
MODEL_NAME = os.getenv("MODEL_NAME", "buffalo_l")
USE_GPU = os.getenv("USE_GPU", "1") == "1"
DETECTION_SIZE = int(os.getenv("DETECTION_SIZE", "640"))

# Camera
CAMERA_SOURCE = os.getenv("CAMERA_SOURCE", "0")
CAMERA_TYPE = os.getenv("CAMERA_TYPE", "webcam")
CAMERA_WIDTH = int(os.getenv("CAMERA_WIDTH", "1280"))
CAMERA_HEIGHT = int(os.getenv("CAMERA_HEIGHT", "720"))
CAMERA_FPS = int(os.getenv("CAMERA_FPS", "30"))

# Detection
FACE_MATCH_THRESHOLD = 0.6  # Lower is stricter
# Cosine similarity of two face embeddings that counts as a match
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.6"))
RECENT_LIMIT = 20
SCAN_INPUT_SIZE = 416  # Larger input helps the coarse pass find distant faces
MAX_RESULTS = 20
UNKNOWN_THROTTLE_POLICY = os.getenv("UNKNOWN_THROTTLE_POLICY", "shared")

# Logging
LOG_FILE = os.getenv("LOG_FILE", "surveillance.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# SMS alerts
SMS_BASE_URL = os.getenv("SMS_BASE_URL", "http://its.idealsms.in/pushsms.php")
SMS_USERNAME = os.getenv("SMS_USERNAME", "")
SMS_API_PASSWORD = os.getenv("SMS_API_PASSWORD", "")
SMS_SENDER = os.getenv("SMS_SENDER", "")
SMS_PRIORITY = os.getenv("SMS_PRIORITY", "")
SMS_E_ID = os.getenv("SMS_E_ID", "")
SMS_T_ID = os.getenv("SMS_T_ID", "")
ALERT_PHONE = os.getenv("ALERT_PHONE", "")
