"""
Face Match Engine - compares a probe face against candidate reference images.
Detects one face per image, scores each candidate by Euclidean descriptor
distance, and picks the best candidate under a tolerance policy.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

# Candidate statuses
DETECTED = 'detected'
NO_FACE = 'no_face'
LOAD_ERROR = 'load_error'

# Outcome statuses
MATCH_FOUND = 'match_found'
NO_MATCH_FOUND = 'no_match_found'
ERROR = 'error'

DEFAULT_TOLERANCE = 0.6


class FaceMatchError(Exception):
    """Base class for face matching failures."""


class LoadError(FaceMatchError):
    """Image could not be fetched or decoded."""


class NoFaceDetected(FaceMatchError):
    """No face found in an image that requires one."""


class IncompatibleDescriptorError(FaceMatchError):
    """Descriptors produced by different models were about to be compared."""


def euclidean_distance(a, b) -> float:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise IncompatibleDescriptorError(f"Descriptor shapes differ: {a.shape} vs {b.shape}")
    return float(np.linalg.norm(a - b))


def distance_to_confidence(distance: float) -> float:
    return max(0.0, 1.0 - distance)


def format_percent(confidence: float) -> str:
    return f"{confidence * 100:.2f}%"


@dataclass(frozen=True)
class CandidateResult:
    """Outcome of comparing the probe with one candidate image."""
    reference: Any
    status: str
    public_url: Optional[str] = None
    distance: Optional[float] = None
    confidence: Optional[float] = None
    is_match: bool = False          # raw distance <= tolerance, diagnostics only
    probe_face: Optional[dict] = None
    candidate_face: Optional[dict] = None
    message: Optional[str] = None

    @property
    def detected(self) -> bool:
        return self.status == DETECTED

    def to_dict(self) -> dict:
        data = {
            'reference': str(self.reference),
            'public_url': self.public_url,
            'status': self.status,
        }
        if self.detected:
            data.update({
                'distance': round(self.distance, 4),
                'confidence': round(self.confidence, 4),
                'is_match': self.is_match,
                'metadata': {
                    'probe_face': self.probe_face,
                    'candidate_face': self.candidate_face,
                },
            })
        else:
            data['message'] = self.message
        return data


@dataclass(frozen=True)
class MatchOutcome:
    """Aggregate result of one find_best_match call."""
    status: str
    message: str
    best_match: Optional[CandidateResult] = None
    all_results: List[CandidateResult] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.status == MATCH_FOUND

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'message': self.message,
            'best_match': self.best_match.to_dict() if self.best_match else None,
            'all_results': [r.to_dict() for r in self.all_results],
        }


class FaceMatchEngine:
    """
    Finds the best matching candidate image for a probe image.

    Collaborators (injected):
        provider: has detect(image) -> Optional[DetectedFace]
        image_source: has load(reference) -> image and public_url(reference)

    Stateless between calls; candidate pipelines are independent and may run
    on a thread pool. Results always come back in input order.
    """

    def __init__(self, provider, image_source, max_workers: int = 4):
        self.provider = provider
        self.image_source = image_source
        self.max_workers = max(1, int(max_workers))

    def find_best_match(self, probe, candidates: Sequence,
                        tolerance: float = DEFAULT_TOLERANCE) -> MatchOutcome:
        """
        Compare the probe against every candidate and classify the best one.

        Args:
            probe: image reference for the face to verify
            candidates: image references to compare against
            tolerance: distance threshold in (0, 1]

        Returns:
            MatchOutcome. Failures are reported through its status field.
        """
        if not 0 < tolerance <= 1:
            raise ValueError(f"tolerance must be in (0, 1], got {tolerance}")

        candidates = list(candidates)
        logger.info(f"Matching probe against {len(candidates)} candidates (tolerance={tolerance})")

        try:
            probe_face = self._detect_probe(probe)
        except FaceMatchError as e:
            logger.warning(f"Probe rejected: {e}")
            return MatchOutcome(status=ERROR, message=str(e))

        results = self._compare_all(probe_face, candidates, tolerance)
        outcome = self._classify(results, tolerance)
        logger.info(f"Match outcome: {outcome.status} - {outcome.message}")
        return outcome

    def _detect_probe(self, probe):
        try:
            image = self.image_source.load(probe)
        except LoadError as e:
            raise LoadError(f"Could not load probe image: {e}") from e

        try:
            face = self.provider.detect(image)
        except FaceMatchError:
            raise
        except Exception as e:
            raise LoadError(f"Error processing probe image: {e}") from e

        if face is None:
            raise NoFaceDetected("No face detected in the probe image")
        return face

    def _compare_all(self, probe_face, candidates, tolerance) -> List[CandidateResult]:
        if self.max_workers == 1 or len(candidates) < 2:
            return [self._compare_one(probe_face, c, tolerance) for c in candidates]

        # map() yields in submission order regardless of completion order
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(candidates))) as pool:
            return list(pool.map(lambda c: self._compare_one(probe_face, c, tolerance), candidates))

    def _compare_one(self, probe_face, reference, tolerance) -> CandidateResult:
        public_url = None
        try:
            public_url = self.image_source.public_url(reference)
            image = self.image_source.load(reference)
            face = self.provider.detect(image)
        except LoadError as e:
            logger.debug(f"Candidate {reference}: load error ({e})")
            return CandidateResult(reference=reference, status=LOAD_ERROR,
                                   public_url=public_url, message=str(e))
        except Exception as e:
            # A provider failure is permanent for this candidate within one call
            logger.warning(f"Candidate {reference}: detection failed ({e})")
            return CandidateResult(reference=reference, status=LOAD_ERROR,
                                   public_url=public_url,
                                   message=f"Error processing reference image: {e}")

        if face is None:
            logger.debug(f"Candidate {reference}: no face")
            return CandidateResult(reference=reference, status=NO_FACE, public_url=public_url,
                                   message="No face detected in reference image")

        if face.model != probe_face.model:
            raise IncompatibleDescriptorError(
                f"Cannot compare {probe_face.model} descriptor with {face.model}")

        distance = euclidean_distance(probe_face.descriptor, face.descriptor)
        confidence = distance_to_confidence(distance)
        logger.debug(f"Candidate {reference}: distance={distance:.4f} confidence={confidence:.4f}")

        return CandidateResult(
            reference=reference,
            status=DETECTED,
            public_url=public_url,
            distance=distance,
            confidence=confidence,
            is_match=distance <= tolerance,
            probe_face=probe_face.to_dict(),
            candidate_face=face.to_dict(),
        )

    @staticmethod
    def _classify(results: List[CandidateResult], tolerance: float) -> MatchOutcome:
        valid = [r for r in results if r.detected]
        if not valid:
            return MatchOutcome(status=ERROR, message="No valid comparisons could be made",
                                all_results=results)

        # sorted() is stable: equal confidences keep input order
        best = sorted(valid, key=lambda r: r.confidence, reverse=True)[0]
        percent = format_percent(best.confidence)

        if best.confidence >= 1 - tolerance:
            return MatchOutcome(status=MATCH_FOUND, best_match=best, all_results=results,
                                message=f"Best match found with {percent} confidence")

        return MatchOutcome(
            status=NO_MATCH_FOUND, best_match=best, all_results=results,
            message=f"No match found above threshold. Best candidate has {percent} confidence",
        )
