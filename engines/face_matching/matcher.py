"""
Face Matcher — Euclidean-distance matching of a query descriptor against
the stored descriptors of event photos.
A photo matches when ANY of its faces is strictly closer than the threshold.
"""

import logging
from dataclasses import dataclass, field
from typing import Hashable, List, Optional, Sequence, Tuple

import numpy as np

from engines.face_matching.errors import DimensionMismatch

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 1.0

Candidate = Tuple[Hashable, Sequence[np.ndarray]]


@dataclass
class MatchResult:
    """Photos judged to contain the query face."""
    photo_ids: List[Hashable] = field(default_factory=list)
    total_photos: int = 0
    candidates: int = 0

    @property
    def matched(self) -> bool:
        return bool(self.photo_ids)

    @property
    def count(self) -> int:
        return len(self.photo_ids)

    def to_dict(self) -> dict:
        return {
            'photo_ids': list(self.photo_ids),
            'total_photos': self.total_photos,
            'candidates': self.candidates,
            'matching_photos': self.count,
        }


def _as_vector(descriptor) -> np.ndarray:
    return np.asarray(descriptor, dtype=np.float32).reshape(-1)


def euclidean_distance(a, b) -> float:
    """Euclidean distance between two descriptors of equal length."""
    a, b = _as_vector(a), _as_vector(b)
    if a.shape != b.shape:
        raise DimensionMismatch(f"Cannot compare {a.shape[0]}-d and {b.shape[0]}-d descriptors")
    return float(np.linalg.norm(a - b))


class FaceMatcher:
    """
    Decides which candidate photos contain the query face.

    Output keeps the candidates' order (gallery order); it is not a ranking.
    """

    def __init__(self, threshold: float = DEFAULT_MATCH_THRESHOLD):
        self.threshold = threshold

    def distances(self, query, descriptors: Sequence[np.ndarray]) -> np.ndarray:
        """Distance from the query to each descriptor of one photo."""
        query = _as_vector(query)
        if len(descriptors) == 0:
            return np.empty(0, dtype=np.float32)

        vectors = [_as_vector(d) for d in descriptors]
        for vector in vectors:
            if vector.shape != query.shape:
                raise DimensionMismatch(
                    f"Cannot compare {query.shape[0]}-d query with {vector.shape[0]}-d descriptor"
                )
        return np.linalg.norm(np.vstack(vectors) - query, axis=1)

    def is_match(self, query, descriptors: Sequence[np.ndarray]) -> bool:
        return bool(np.any(self.distances(query, descriptors) < self.threshold))

    def find_matches(self, query, candidates: Sequence[Candidate]) -> list:
        """
        Return the ids of candidate photos with a face within threshold.

        Args:
            query: descriptor of the face being searched for
            candidates: (photo_id, descriptors) pairs in gallery order

        Returns:
            Matching photo ids, in candidate order
        """
        return [photo_id for photo_id, descriptors in candidates
                if self.is_match(query, descriptors)]

    def match(self, query, candidates: Sequence[Candidate],
              total_photos: Optional[int] = None) -> MatchResult:
        candidates = list(candidates)
        photo_ids = self.find_matches(query, candidates)
        logger.debug(f"FaceMatcher: {len(photo_ids)}/{len(candidates)} candidates within {self.threshold}")
        return MatchResult(
            photo_ids=photo_ids,
            total_photos=len(candidates) if total_photos is None else total_photos,
            candidates=len(candidates),
        )

    def get_stats(self) -> dict:
        return {'threshold': self.threshold, 'metric': 'euclidean'}


def find_matches(query, candidates: Sequence[Candidate],
                 threshold: float = DEFAULT_MATCH_THRESHOLD) -> list:
    """Functional shortcut for FaceMatcher(threshold).find_matches()."""
    return FaceMatcher(threshold).find_matches(query, candidates)
