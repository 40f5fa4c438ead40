"""
Facial Recognition Engine
Provides single-face detection/embedding and best-match selection.

Usage:
    from engines.facial_recognition import FaceDetector, FaceMatchEngine

    detector = FaceDetector(gpu_id=0)
    engine   = FaceMatchEngine(detector, image_source)
    outcome  = engine.find_best_match(probe, candidates, tolerance=0.6)
"""

from engines.facial_recognition.detector import (
    FaceDetector, DetectedFace, BoundingBox, ModelLoadError,
)
from engines.facial_recognition.matcher import (
    FaceMatchEngine, CandidateResult, MatchOutcome,
    FaceMatchError, LoadError, NoFaceDetected, IncompatibleDescriptorError,
)

__all__ = [
    'FaceDetector', 'DetectedFace', 'BoundingBox', 'ModelLoadError',
    'FaceMatchEngine', 'CandidateResult', 'MatchOutcome',
    'FaceMatchError', 'LoadError', 'NoFaceDetected', 'IncompatibleDescriptorError',
]
