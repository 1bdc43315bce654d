"""
Error taxonomy for the face-matching engine.
"""


class FaceMatchingError(Exception):
    """Base class for face-matching engine errors."""


class ModelLoadError(FaceMatchingError):
    """Every configured model source failed; extraction cannot run."""


class DecodeError(FaceMatchingError):
    """Image bytes could not be decoded into a picture."""


class DimensionMismatch(FaceMatchingError, ValueError):
    """Two descriptors of different length were compared."""


class HistoryWriteError(FaceMatchingError):
    """A PhotoHistory record could not be written (non-fatal)."""

    def __init__(self, photo_id, cause):
        super().__init__(f"History write failed for photo {photo_id}: {cause}")
        self.photo_id = photo_id
        self.cause = cause
