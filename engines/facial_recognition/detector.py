"""
Face Detector - InsightFace Buffalo_L wrapper.
Acts as the face embedding provider for the match engine: one image in,
at most one DetectedFace (box, detection score, descriptor) out.
GPU-accelerated via ONNX Runtime CUDA provider with CPU fallback.
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)

# Lazy import - InsightFace may not be installed in all environments
try:
    from insightface.app import FaceAnalysis
    INSIGHTFACE_AVAILABLE = True
except ImportError:
    INSIGHTFACE_AVAILABLE = False
    logger.warning("InsightFace not installed - face detection unavailable")


class ModelLoadError(RuntimeError):
    """Raised when the face model cannot be initialized with any provider."""


@dataclass(frozen=True)
class BoundingBox:
    """Face box in pixel coordinates: top-left corner plus size."""
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_list(self) -> List[float]:
        return [self.x, self.y, self.width, self.height]


@dataclass(frozen=True)
class DetectedFace:
    """A single face found by the provider."""
    box: BoundingBox
    score: float                 # Detection confidence
    descriptor: np.ndarray       # Fixed-length embedding
    model: str = 'buffalo_l'

    def to_dict(self) -> dict:
        return {
            'score': round(self.score, 4),
            'box': [round(v, 2) for v in self.box.to_list()],
        }


class FaceDetector:
    """
    Detects a face and computes its descriptor using InsightFace.

    Responsibilities:
        - Load the model once (thread-safe, on first use or via load())
        - Return the best-scoring face of an image, or None

    Does NOT compare descriptors - see FaceMatchEngine.
    """

    def __init__(self, model_name: str = 'buffalo_l', gpu_id: int = 0,
                 det_size: tuple = (640, 640)):
        self.model_name = model_name
        self.gpu_id = gpu_id
        self.det_size = det_size
        self.app = None
        self._load_lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self.app is not None

    def load(self):
        """Initialize the model exactly once; concurrent callers wait for the first."""
        if self.app is not None:
            return
        with self._load_lock:
            if self.app is not None:
                return
            if not INSIGHTFACE_AVAILABLE:
                raise ModelLoadError("InsightFace not available")
            self.app = self._init_model()

    def _init_model(self):
        """Initialize InsightFace - tries GPU first, falls back to CPU."""
        provider_options = [
            ['CUDAExecutionProvider', 'CPUExecutionProvider'],
            ['CPUExecutionProvider'],
        ]
        for providers in provider_options:
            try:
                app = FaceAnalysis(name=self.model_name, providers=providers)
                app.prepare(ctx_id=self.gpu_id, det_size=self.det_size)
                logger.info(f"FaceDetector: {self.model_name} loaded with {providers}")
                return app
            except Exception as e:
                logger.warning(f"FaceDetector init failed with {providers}: {e}")
        raise ModelLoadError(f"Could not initialize {self.model_name} with any provider")

    def detect(self, image: np.ndarray) -> Optional[DetectedFace]:
        """
        Detect the most confident face in a BGR image.

        Args:
            image: BGR image (numpy array, OpenCV format)

        Returns:
            DetectedFace, or None if the image contains no face
        """
        self.load()

        raw_faces = self.app.get(image)
        if not raw_faces:
            return None

        face = max(raw_faces, key=lambda f: float(getattr(f, 'det_score', 0.0)))
        x1, y1, x2, y2 = (float(v) for v in face.bbox)
        return DetectedFace(
            box=BoundingBox(x=x1, y=y1, width=x2 - x1, height=y2 - y1),
            score=float(getattr(face, 'det_score', 0.0)),
            descriptor=np.asarray(face.normed_embedding, dtype=np.float32),
            model=self.model_name,
        )

    def get_stats(self) -> dict:
        return {
            'available': self.available,
            'model': self.model_name,
            'gpu_id': self.gpu_id,
            'det_size': self.det_size,
        }
