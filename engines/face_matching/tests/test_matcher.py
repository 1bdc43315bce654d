"""
Tests for FaceMatcher engine module.
"""

import numpy as np
import pytest

from engines.face_matching.errors import DimensionMismatch
from engines.face_matching.matcher import (
    FaceMatcher, MatchResult, euclidean_distance, find_matches,
)


def _offset(base, distance):
    """Descriptor exactly `distance` away from base along the first axis."""
    other = base.copy()
    other[0] += distance
    return other


class TestMatchResult:
    def test_matched_property(self):
        assert MatchResult(photo_ids=[3]).matched is True
        assert MatchResult().matched is False

    def test_to_dict(self):
        r = MatchResult(photo_ids=[1, 4], total_photos=5, candidates=3)
        d = r.to_dict()
        assert d['photo_ids'] == [1, 4]
        assert d['total_photos'] == 5
        assert d['matching_photos'] == 2


class TestEuclideanDistance:
    def test_known_distance(self):
        assert euclidean_distance([0, 0, 0], [3, 4, 0]) == pytest.approx(5.0)

    def test_identical_is_zero(self):
        emb = np.random.randn(512).astype(np.float32)
        assert euclidean_distance(emb, emb) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatch, match='128-d'):
            euclidean_distance(np.zeros(512), np.zeros(128))


class TestFaceMatcher:
    def setup_method(self):
        self.query = np.zeros(512, dtype=np.float32)

    def test_within_threshold_matches(self):
        matcher = FaceMatcher(threshold=0.5)
        assert matcher.find_matches(self.query, [(1, [_offset(self.query, 0.25)])]) == [1]

    def test_beyond_threshold_excluded(self):
        matcher = FaceMatcher(threshold=0.5)
        assert matcher.find_matches(self.query, [(1, [_offset(self.query, 0.75)])]) == []

    def test_exactly_at_threshold_is_excluded(self):
        matcher = FaceMatcher(threshold=0.5)
        candidate = _offset(self.query, 0.5)
        assert euclidean_distance(self.query, candidate) == 0.5
        assert matcher.find_matches(self.query, [(1, [candidate])]) == []

    def test_order_preserved(self):
        matcher = FaceMatcher(threshold=0.5)
        near = _offset(self.query, 0.1)
        nearer = _offset(self.query, 0.01)
        far = _offset(self.query, 2.0)
        candidates = [('A', [far]), ('B', [near]), ('C', [nearer])]
        # C is closer than B, but gallery order wins
        assert matcher.find_matches(self.query, candidates) == ['B', 'C']

    def test_any_face_in_photo_matches(self):
        matcher = FaceMatcher(threshold=0.5)
        d1 = _offset(self.query, 3.0)
        d2 = _offset(self.query, 0.2)
        assert matcher.find_matches(self.query, [(7, [d1, d2])]) == [7]

    def test_photo_without_descriptors_never_matches(self):
        matcher = FaceMatcher(threshold=0.5)
        assert matcher.find_matches(self.query, [(1, [])]) == []

    def test_dimension_mismatch_raises(self):
        matcher = FaceMatcher(threshold=0.5)
        with pytest.raises(DimensionMismatch):
            matcher.find_matches(self.query, [(1, [np.zeros(128, dtype=np.float32)])])

    def test_accepts_plain_lists(self):
        matcher = FaceMatcher(threshold=0.5)
        assert matcher.find_matches(self.query.tolist(), [(1, [self.query.tolist()])]) == [1]

    def test_deterministic(self):
        matcher = FaceMatcher(threshold=1.0)
        rng = np.random.default_rng(0)
        candidates = [(i, [rng.normal(size=512).astype(np.float32) * 0.03]) for i in range(20)]
        first = matcher.find_matches(self.query, candidates)
        assert first == matcher.find_matches(self.query, candidates)

    def test_match_result_counts(self):
        matcher = FaceMatcher(threshold=0.5)
        candidates = [(1, [self.query]), (2, [_offset(self.query, 5.0)])]
        result = matcher.match(self.query, candidates, total_photos=4)
        assert result.photo_ids == [1]
        assert result.total_photos == 4
        assert result.candidates == 2

    def test_stats(self):
        stats = FaceMatcher(threshold=0.8).get_stats()
        assert stats['threshold'] == 0.8
        assert stats['metric'] == 'euclidean'


class TestFindMatches:
    def test_uses_given_threshold(self):
        query = np.zeros(4, dtype=np.float32)
        candidate = np.array([0.7, 0, 0, 0], dtype=np.float32)
        assert find_matches(query, [(1, [candidate])], threshold=0.6) == []
        assert find_matches(query, [(1, [candidate])], threshold=0.8) == [1]
