"""
Tests for FaceMatchEngine engine module.
"""

import math
import threading
import time

import numpy as np
import pytest
from unittest.mock import MagicMock

from engines.facial_recognition.detector import BoundingBox, DetectedFace, ModelLoadError
from engines.facial_recognition.matcher import (
    FaceMatchEngine, CandidateResult, MatchOutcome, LoadError,
    IncompatibleDescriptorError, euclidean_distance, distance_to_confidence,
    DETECTED, NO_FACE, LOAD_ERROR, MATCH_FOUND, NO_MATCH_FOUND, ERROR,
)


def _face(descriptor, score=0.99, model='buffalo_l'):
    return DetectedFace(
        box=BoundingBox(10, 20, 100, 120),
        score=score,
        descriptor=np.array(descriptor, dtype=np.float32),
        model=model,
    )


class FakeImageSource:
    """Maps a reference string to an image token; errors raise LoadError."""

    def __init__(self, images, delays=None):
        self.images = images
        self.delays = delays or {}
        self.loaded = []
        self.lock = threading.Lock()

    def public_url(self, reference):
        return f'https://cdn.test/{reference}'

    def load(self, reference):
        time.sleep(self.delays.get(reference, 0))
        with self.lock:
            self.loaded.append(reference)
        image = self.images.get(reference)
        if image is None:
            raise LoadError(f"Failed to load image from URL: {reference}")
        return image


class FakeProvider:
    """Maps an image token to a face (or None)."""

    def __init__(self, faces):
        self.faces = faces

    def detect(self, image):
        return self.faces.get(image)


def _engine(faces, images=None, max_workers=1, delays=None):
    images = images if images is not None else {k: k for k in faces}
    source = FakeImageSource(images, delays)
    return FaceMatchEngine(FakeProvider(faces), source, max_workers=max_workers), source


class TestDistance:
    def test_identical_descriptors(self):
        assert euclidean_distance([1, 0, 0], [1, 0, 0]) == 0.0

    def test_orthogonal_descriptors(self):
        assert euclidean_distance([1, 0, 0], [0, 1, 0]) == pytest.approx(math.sqrt(2))

    def test_shape_mismatch(self):
        with pytest.raises(IncompatibleDescriptorError):
            euclidean_distance([1, 0], [1, 0, 0])

    def test_confidence_clamped(self):
        assert distance_to_confidence(0.25) == 0.75
        assert distance_to_confidence(1.414) == 0.0


class TestOutcomeSerialization:
    def test_candidate_to_dict_detected(self):
        r = CandidateResult(reference='a.jpg', status=DETECTED, public_url='u',
                            distance=0.123456, confidence=0.876544, is_match=True,
                            probe_face={'score': 0.9}, candidate_face={'score': 0.8})
        d = r.to_dict()
        assert d['distance'] == 0.1235
        assert d['confidence'] == 0.8765
        assert d['metadata']['candidate_face'] == {'score': 0.8}

    def test_candidate_to_dict_failure(self):
        d = CandidateResult(reference='a.jpg', status=NO_FACE, message='none').to_dict()
        assert d['status'] == NO_FACE
        assert 'distance' not in d
        assert d['message'] == 'none'

    def test_outcome_matched(self):
        assert MatchOutcome(status=MATCH_FOUND, message='').matched is True
        assert MatchOutcome(status=ERROR, message='').matched is False


class TestFaceMatchEngine:
    def test_best_match_found(self):
        engine, _ = _engine({
            'probe': _face([1, 0, 0]),
            'same': _face([1, 0, 0]),
            'other': _face([0, 1, 0]),
        })
        outcome = engine.find_best_match('probe', ['same', 'other'], tolerance=0.6)

        assert outcome.status == MATCH_FOUND
        assert outcome.best_match.reference == 'same'
        assert outcome.best_match.confidence == 1.0
        assert outcome.message == "Best match found with 100.00% confidence"
        other = outcome.all_results[1]
        assert other.confidence == 0.0
        assert other.distance == pytest.approx(math.sqrt(2), rel=1e-6)
        assert other.is_match is False

    def test_best_candidate_below_threshold(self):
        engine, _ = _engine({
            'probe': _face([1, 0, 0]),
            'half': _face([0.5, 0.5, 0]),
        })
        outcome = engine.find_best_match('probe', ['half'], tolerance=0.6)

        assert outcome.status == NO_MATCH_FOUND
        assert outcome.best_match.confidence == pytest.approx(1 - math.sqrt(0.5), rel=1e-6)
        assert '29.29%' in outcome.message

    def test_threshold_boundary_is_inclusive(self):
        engine, _ = _engine({
            'probe': _face([1.0, 0.0]),
            'edge': _face([0.5, 0.0]),
        })
        outcome = engine.find_best_match('probe', ['edge'], tolerance=0.5)

        assert outcome.best_match.distance == 0.5
        assert outcome.best_match.confidence == 0.5
        assert outcome.best_match.is_match is True
        assert outcome.status == MATCH_FOUND

    def test_empty_candidates(self):
        engine, _ = _engine({'probe': _face([1, 0, 0])})
        outcome = engine.find_best_match('probe', [], tolerance=0.6)
        assert outcome.status == ERROR
        assert outcome.all_results == []
        assert outcome.best_match is None

    def test_probe_without_face_skips_candidates(self):
        source = MagicMock()
        source.load.return_value = 'probe-image'
        provider = MagicMock()
        provider.detect.return_value = None
        engine = FaceMatchEngine(provider, source)

        outcome = engine.find_best_match('probe', ['a', 'b', 'c'])

        assert outcome.status == ERROR
        assert outcome.message == "No face detected in the probe image"
        assert source.load.call_count == 1
        source.public_url.assert_not_called()

    def test_probe_load_error(self):
        engine, source = _engine({'a': _face([1, 0, 0])}, images={'a': 'a'})
        outcome = engine.find_best_match('missing', ['a'])
        assert outcome.status == ERROR
        assert outcome.message.startswith("Could not load probe image")
        assert source.loaded == ['missing']

    def test_selfie_provider_failure_is_error_outcome(self):
        source = FakeImageSource({'probe': 'p', 'a': 'a'})
        provider = MagicMock()
        provider.detect.side_effect = ModelLoadError("InsightFace not available")
        engine = FaceMatchEngine(provider, source, max_workers=1)

        outcome = engine.find_best_match('probe', ['a'])

        assert outcome.status == ERROR
        assert outcome.message == "Error processing probe image: InsightFace not available"
        assert outcome.all_results == []
        assert source.loaded == ['probe']

    def test_mixed_statuses_keep_order(self):
        engine, _ = _engine(
            {'probe': _face([1, 0, 0]), 'good': _face([0.9, 0.1, 0])},
            images={'probe': 'probe', 'blank': 'blank', 'good': 'good'},
        )
        outcome = engine.find_best_match('probe', ['broken', 'blank', 'good'])

        assert [r.status for r in outcome.all_results] == [LOAD_ERROR, NO_FACE, DETECTED]
        assert [r.reference for r in outcome.all_results] == ['broken', 'blank', 'good']
        assert outcome.best_match.reference == 'good'
        assert outcome.status == MATCH_FOUND

    def test_no_valid_comparisons(self):
        engine, _ = _engine({'probe': _face([1, 0, 0])},
                            images={'probe': 'probe', 'blank': 'blank'})
        outcome = engine.find_best_match('probe', ['blank', 'broken'])
        assert outcome.status == ERROR
        assert outcome.message == "No valid comparisons could be made"
        assert len(outcome.all_results) == 2

    def test_ties_keep_input_order(self):
        engine, _ = _engine({
            'probe': _face([1, 0, 0]),
            'first': _face([0, 1, 0]),
            'second': _face([0, 0, 1]),
        })
        outcome = engine.find_best_match('probe', ['first', 'second'])
        assert outcome.best_match.reference == 'first'

    def test_provider_failure_is_local(self):
        provider = MagicMock()
        provider.detect.side_effect = [_face([1, 0, 0]), RuntimeError('model crashed'),
                                       _face([1, 0, 0])]
        source = FakeImageSource({'probe': 'p', 'a': 'a', 'b': 'b'})
        engine = FaceMatchEngine(provider, source, max_workers=1)

        outcome = engine.find_best_match('probe', ['a', 'b'])

        assert outcome.all_results[0].status == LOAD_ERROR
        assert 'model crashed' in outcome.all_results[0].message
        assert outcome.best_match.reference == 'b'

    def test_public_url_recorded(self):
        engine, _ = _engine({'probe': _face([1, 0, 0]), 'a': _face([1, 0, 0])})
        outcome = engine.find_best_match('probe', ['a'])
        assert outcome.best_match.public_url == 'https://cdn.test/a'

    def test_parallel_results_in_input_order(self):
        faces = {'probe': _face([1, 0, 0])}
        refs = [f'c{i}' for i in range(6)]
        for i, ref in enumerate(refs):
            faces[ref] = _face([1, i * 0.1, 0])
        # Earlier candidates finish last
        delays = {ref: 0.05 * (len(refs) - i) for i, ref in enumerate(refs)}
        engine, _ = _engine(faces, max_workers=4, delays=delays)

        outcome = engine.find_best_match('probe', refs)

        assert [r.reference for r in outcome.all_results] == refs
        assert outcome.best_match.reference == 'c0'

    def test_deterministic(self):
        faces = {'probe': _face([0.2, 0.4, 0.1]), 'a': _face([0.3, 0.1, 0.2]),
                 'b': _face([0.25, 0.35, 0.1])}
        engine, _ = _engine(faces)
        first = engine.find_best_match('probe', ['a', 'b'], tolerance=0.4)
        second = engine.find_best_match('probe', ['a', 'b'], tolerance=0.4)
        assert first == second

    def test_incompatible_models_rejected(self):
        engine, _ = _engine({
            'probe': _face([1, 0, 0]),
            'a': _face([1, 0, 0], model='antelopev2'),
        })
        with pytest.raises(IncompatibleDescriptorError):
            engine.find_best_match('probe', ['a'])

    @pytest.mark.parametrize('tolerance', [0, -0.1, 1.5])
    def test_invalid_tolerance(self, tolerance):
        engine, _ = _engine({'probe': _face([1, 0, 0])})
        with pytest.raises(ValueError, match='tolerance'):
            engine.find_best_match('probe', [], tolerance=tolerance)
