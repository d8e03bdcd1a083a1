"""
Unit tests for FaceMatcher.
"""
import math

import numpy as np
import pytest

from conftest import make_descriptor
from matcher import FaceMatcher
from schemas import KnownFace


def _face(face_id: str, name: str, descriptor) -> KnownFace:
    return KnownFace(id=face_id, name=name, role="Staff", face_descriptor=descriptor)


class TestFaceMatcher:
    """Tests for FaceMatcher.find_best_match"""

    def test_empty_registry_is_unknown(self):
        matcher = FaceMatcher([])
        for seed in range(5):
            result = matcher.find_best_match(make_descriptor(seed))
            assert result.label == "unknown"
            assert result.is_known is False
            assert math.isinf(result.distance)

    def test_self_match_has_zero_distance(self):
        descriptor = make_descriptor(1)
        matcher = FaceMatcher([_face("person-1", "Alice", descriptor)])
        result = matcher.find_best_match(descriptor)
        assert result.label == "Alice"
        assert result.distance == 0.0
        assert result.face.id == "person-1"

    def test_nearest_face_wins(self):
        base = np.zeros(128)
        near = base.copy()
        near[0] = 0.1
        far = base.copy()
        far[0] = 0.3
        matcher = FaceMatcher([_face("p-far", "Far", far), _face("p-near", "Near", near)])
        assert matcher.find_best_match(base).label == "Near"

    def test_beyond_threshold_is_unknown(self):
        known = np.zeros(128)
        query = np.zeros(128)
        query[0] = 0.7
        matcher = FaceMatcher([_face("p-1", "Alice", known)])
        result = matcher.find_best_match(query)
        assert result.label == "unknown"
        assert result.distance == pytest.approx(0.7)

    def test_threshold_is_strict(self):
        known = np.zeros(4)
        query = np.array([0.5, 0, 0, 0])
        matcher = FaceMatcher([_face("p-1", "Alice", known)], threshold=0.5)
        assert matcher.find_best_match(query).label == "unknown"

    def test_exact_tie_prefers_first_registered(self):
        descriptor = make_descriptor(7)
        matcher = FaceMatcher([
            _face("p-1", "First", descriptor),
            _face("p-2", "Second", descriptor),
        ])
        assert matcher.find_best_match(descriptor).label == "First"

    def test_mismatched_descriptor_size_is_skipped(self):
        matcher = FaceMatcher([
            _face("p-1", "Short", [0.0] * 64),
            _face("p-2", "Full", [0.0] * 128),
        ])
        assert matcher.find_best_match([0.0] * 128).label == "Full"

    def test_face_stored_under_unknown_label_is_not_known(self):
        descriptor = make_descriptor(4)
        result = FaceMatcher([_face("p-1", "unknown", descriptor)]).find_best_match(descriptor)
        assert result.label == "unknown"
        assert result.is_known is False
