"""
Subject distance from apparent face size.

Assumes an average face (~15 cm wide) fills about 15% of the frame width at
1 m. These constants need calibration for a specific camera and lens.
"""

REF_DISTANCE_M = 1.0
REF_SIZE_RATIO = 0.15
MIN_DISTANCE_M = 0.5  # Faces right against the lens read as closer than they are


def estimate_distance(face_pixel_size: float, frame_width: float) -> float:
    """
    Estimate distance in meters to a face of the given pixel size.

    Inverse relationship: halving the face size doubles the distance.
    Callers must skip faces with a non-positive size.
    """
    expected_size_at_ref = frame_width * REF_SIZE_RATIO
    size_ratio = expected_size_at_ref / face_pixel_size
    return max(MIN_DISTANCE_M, REF_DISTANCE_M * size_ratio)
