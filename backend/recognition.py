"""
Face detection and description using InsightFace.
Supports GPU with CPU fallback.

FaceAnalyzer is the detection capability consumed by the pipeline: a cheap
presence scan and a full analysis pass (box, landmarks, descriptor,
expression scores).
"""
import logging
import math
from typing import Callable, Dict, List, Optional

import numpy as np

from config import FACE_MATCH_THRESHOLD, SIMILARITY_THRESHOLD
from faces import FaceBox, FaceDetection

logger = logging.getLogger("surveillance.recognition")

# Maps a BGR face crop to expression scores, e.g. {"happy": 0.9, "neutral": 0.1}
ExpressionModel = Callable[[np.ndarray], Dict[str, float]]


def select_providers(use_gpu: bool) -> List[str]:
    """Pick ONNX Runtime execution providers, preferring CUDA then CoreML."""
    if not use_gpu:
        logger.info("Using CPU (GPU disabled)")
        return ['CPUExecutionProvider']

    try:
        import onnxruntime as ort
        available_providers = ort.get_available_providers()
    except Exception as e:
        logger.warning("Error checking GPU: %s, falling back to CPU", e)
        return ['CPUExecutionProvider']

    if 'CUDAExecutionProvider' in available_providers:
        logger.info("✓ GPU (CUDA) available, using GPU acceleration")
        return ['CUDAExecutionProvider', 'CPUExecutionProvider']
    if 'CoreMLExecutionProvider' in available_providers:
        logger.info("✓ CoreML available, using Apple GPU acceleration")
        return ['CoreMLExecutionProvider', 'CPUExecutionProvider']
    logger.warning("GPU not available, using CPU")
    return ['CPUExecutionProvider']


def descriptor_scale(similarity_threshold: float, match_threshold: float = FACE_MATCH_THRESHOLD) -> float:
    """
    Scale for unit-length embeddings so the matcher's Euclidean threshold
    accepts exactly the pairs whose cosine similarity exceeds similarity_threshold.

    For unit vectors ||a - b|| = sqrt(2 - 2 cos), so after scaling both by s:
    s * sqrt(2 - 2 cos) < match_threshold  <=>  cos > similarity_threshold.
    """
    if not -1.0 < similarity_threshold < 1.0:
        raise ValueError(f"Similarity threshold must be in (-1, 1), got {similarity_threshold}")
    return match_threshold / math.sqrt(2.0 - 2.0 * similarity_threshold)


class FaceAnalyzer:
    """
    Wrapper around InsightFace FaceAnalysis.
    Uses buffalo_l by default.
    """

    def __init__(
        self,
        model_name: str = "buffalo_l",
        det_size: tuple = (640, 640),
        use_gpu: bool = True,
        expression_model: Optional[ExpressionModel] = None,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
    ):
        """
        Load the models.

        Args:
            model_name: InsightFace model pack (buffalo_l, buffalo_sc, etc.)
            det_size: Detection size for the full analysis pass
            use_gpu: Try to use GPU, fallback to CPU if unavailable
            expression_model: Optional expression classifier applied to face crops
            similarity_threshold: Cosine similarity above which two faces match
        """
        from insightface.app import FaceAnalysis

        logger.info("Loading InsightFace model: %s...", model_name)
        providers = select_providers(use_gpu)

        self.app = FaceAnalysis(name=model_name, providers=providers)
        # Keep the detector permissive; scan() and analyze() apply their own floors
        self.app.prepare(ctx_id=0, det_thresh=0.1, det_size=det_size)

        self.model_name = model_name
        self.providers = providers
        self.expression_model = expression_model
        self.descriptor_scale = descriptor_scale(similarity_threshold)
        logger.info("✓ Model %s loaded with providers: %s", model_name, providers)

    def get_provider_info(self) -> Dict:
        """Get information about active execution providers."""
        return {
            "model": self.model_name,
            "providers": self.providers,
            "using_gpu": any(p in ['CUDAExecutionProvider', 'CoreMLExecutionProvider'] for p in self.providers)
        }

    def to_descriptor(self, embedding) -> np.ndarray:
        """Unit-normalize an embedding and scale it into the matcher's distance space."""
        embedding = np.asarray(embedding, dtype=np.float64)
        return embedding / np.linalg.norm(embedding) * self.descriptor_scale

    def scan(self, image: np.ndarray, score_threshold: float, input_size: int = 416) -> List[FaceBox]:
        """
        Cheap presence test: detector only, no landmarks or descriptors.

        Args:
            image: BGR frame
            score_threshold: Minimum detector score
            input_size: Square detector input; larger finds smaller (farther) faces

        Returns:
            Face boxes above the threshold
        """
        bboxes, _ = self.app.det_model.detect(image, input_size=(input_size, input_size))
        boxes = []
        for x1, y1, x2, y2, score in bboxes:
            if score >= score_threshold:
                boxes.append(FaceBox.from_xyxy(x1, y1, x2, y2, score))
        return boxes

    def analyze(self, image: np.ndarray, min_confidence: float, max_results: int = 20) -> List[FaceDetection]:
        """
        Full pass: boxes, landmarks, descriptors and expression scores.

        Args:
            image: BGR frame
            min_confidence: Minimum detection score to keep a face
            max_results: Maximum number of faces returned

        Returns:
            Detections sorted by the detector (largest faces first)
        """
        faces = self.app.get(image, max_num=max_results)

        results = []
        for face in faces:
            score = float(face.det_score)
            if score < min_confidence:
                continue

            x1, y1, x2, y2 = face.bbox.astype(float)
            box = FaceBox.from_xyxy(x1, y1, x2, y2, score)

            results.append(FaceDetection(
                box=box,
                score=score,
                descriptor=self.to_descriptor(face.normed_embedding),
                expressions=self._expressions(image, box),
                landmarks=face.kps.tolist() if getattr(face, 'kps', None) is not None else [],
            ))

        return results[:max_results]

    def _expressions(self, image: np.ndarray, box: FaceBox) -> Dict[str, float]:
        if self.expression_model is None:
            return {}
        x, y, w, h = box.as_int_list()
        face_crop = image[max(0, y):y + h, max(0, x):x + w]
        if face_crop.size == 0:
            return {}
        return self.expression_model(face_crop)
