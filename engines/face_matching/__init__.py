"""
Face Matching Engine
Extracts face descriptors with InsightFace Buffalo_L and matches them by
Euclidean distance.

Usage:
    from engines.face_matching import DescriptorExtractor, FaceMatcher

    extractor = DescriptorExtractor()
    matcher   = FaceMatcher(threshold=1.0)
    photo_ids = matcher.find_matches(extractor.extract(selfie)[0], candidates)
"""

from engines.face_matching.errors import (
    FaceMatchingError, ModelLoadError, DecodeError, DimensionMismatch, HistoryWriteError,
)
from engines.face_matching.loader import ModelLoader, build_model_loader, get_model_loader
from engines.face_matching.extractor import DescriptorExtractor, DetectedFace, BoundingBox
from engines.face_matching.matcher import FaceMatcher, MatchResult, euclidean_distance, find_matches

__all__ = [
    'FaceMatchingError', 'ModelLoadError', 'DecodeError', 'DimensionMismatch', 'HistoryWriteError',
    'ModelLoader', 'build_model_loader', 'get_model_loader',
    'DescriptorExtractor', 'DetectedFace', 'BoundingBox',
    'FaceMatcher', 'MatchResult', 'euclidean_distance', 'find_matches',
]
