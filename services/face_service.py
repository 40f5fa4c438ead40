"""
Face Verification Service
Wires the InsightFace provider, the image source and the match engine
together, and resolves a user's stored reference images as candidates.
"""

import logging
from typing import Optional, Sequence
from urllib.parse import unquote

from engines.facial_recognition.detector import FaceDetector
from engines.facial_recognition.matcher import FaceMatchEngine, MatchOutcome
from services.image_source import ImageBytes, ImageSource, StoragePath, parse_reference
from services.storage_service import UserImageStore

logger = logging.getLogger(__name__)


class NoReferenceImages(Exception):
    """The user has no stored images to compare against."""


class ReferenceNotAllowed(Exception):
    """A reference points outside the requesting user's own images."""


class FaceService:
    """Face verification against explicit candidates or a user's reference images."""

    def __init__(self, detector, image_source: ImageSource, user_images: UserImageStore,
                 tolerance: float = 0.6, max_workers: int = 4):
        """
        Args:
            detector: embedding provider (FaceDetector or a test double)
            image_source: resolves references to images
            user_images: per-user reference image store
            tolerance: default distance tolerance (0.0-1.0]
            max_workers: parallel candidate pipelines per request
        """
        self.detector = detector
        self.user_images = user_images
        self.tolerance = tolerance
        self.engine = FaceMatchEngine(detector, image_source, max_workers=max_workers)

    def verify(self, probe, candidates: Sequence, tolerance: Optional[float] = None) -> MatchOutcome:
        refs = [parse_reference(c) for c in candidates]
        return self.engine.find_best_match(
            parse_reference(probe), refs,
            tolerance=self.tolerance if tolerance is None else tolerance,
        )

    def verify_user(self, probe, user_id: str, tolerance: Optional[float] = None) -> MatchOutcome:
        """Compare a selfie with every reference image stored for the user."""
        paths = self.user_images.reference_paths(user_id)
        if not paths:
            raise NoReferenceImages(f"No reference images found for user {user_id}")
        logger.info(f"Verifying user {user_id} against {len(paths)} reference images")
        return self.verify(probe, paths, tolerance)

    def ensure_owned(self, user_id: str, references: Sequence):
        """
        Reject storage paths and URLs outside '<bucket>/<user_id>/'.
        Inline image bytes are always allowed.
        """
        folder = f'{self.user_images.bucket}/{user_id}/'
        url_prefix = self.user_images.get_image_url(user_id, '')

        for value in references:
            ref = parse_reference(value)
            if isinstance(ref, ImageBytes):
                continue
            if isinstance(ref, StoragePath):
                target, prefix = ref.path.lstrip('/'), folder
            else:
                target, prefix = ref.url, url_prefix
            segments = unquote(target.split('?', 1)[0]).split('/')
            if not target.startswith(prefix) or '..' in segments:
                raise ReferenceNotAllowed(f"Reference {ref} is not one of your images")

    def get_stats(self) -> dict:
        stats = self.detector.get_stats() if hasattr(self.detector, 'get_stats') else {}
        stats.update({
            'tolerance': self.tolerance,
            'max_workers': self.engine.max_workers,
        })
        return stats


# ---------- Global Instance ----------
face_service = None


def init_face_service(config, storage) -> FaceService:
    """Initialize the global face service from app config. The model loads on first use."""
    global face_service
    detector = FaceDetector(
        model_name=config['FACE_MODEL_NAME'],
        gpu_id=config['FACE_GPU_ID'],
        det_size=config['FACE_DET_SIZE'],
    )
    image_source = ImageSource(
        storage,
        timeout=config['IMAGE_FETCH_TIMEOUT'],
        default_bucket=config['REFERENCE_BUCKET'],
        max_bytes=config['MAX_IMAGE_BYTES'],
    )
    face_service = FaceService(
        detector,
        image_source,
        UserImageStore(storage, bucket=config['REFERENCE_BUCKET']),
        tolerance=config['FACE_MATCH_TOLERANCE'],
        max_workers=config['MATCH_MAX_WORKERS'],
    )
    return face_service
