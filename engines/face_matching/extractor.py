"""
Descriptor Extractor — image bytes to face descriptors.
Decodes the image, runs the shared InsightFace model (detection, landmark
alignment, ArcFace embedding) and normalizes every provider face record into
a canonical fixed-length float32 descriptor.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np

from engines.face_matching.errors import DecodeError
from engines.face_matching.loader import ModelLoader, get_model_loader

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 512


@dataclass
class BoundingBox:
    """Axis-aligned bounding box in pixel coordinates."""
    left: int
    top: int
    right: int
    bottom: int

    @property
    def area(self) -> int:
        return max(0, self.right - self.left) * max(0, self.bottom - self.top)

    def to_dict(self) -> dict:
        return {'left': self.left, 'top': self.top, 'right': self.right, 'bottom': self.bottom}


@dataclass
class DetectedFace:
    """A face found in an image, reduced to what matching needs."""
    bbox: BoundingBox
    descriptor: np.ndarray       # EMBEDDING_DIM float32 vector
    det_score: float = 0.0

    def to_dict(self) -> dict:
        return {
            'location': self.bbox.to_dict(),
            'det_score': round(self.det_score, 3),
        }


def normalize_face(face, embedding_dim: int = EMBEDDING_DIM) -> Optional[DetectedFace]:
    """
    Map a provider face record onto a DetectedFace.

    Prefers the provider's L2-normalized embedding and normalizes the raw one
    otherwise. Returns None when the record carries no usable embedding.
    """
    embedding = getattr(face, 'normed_embedding', None)
    if embedding is None:
        raw = getattr(face, 'embedding', None)
        if raw is None:
            return None
        raw = np.asarray(raw, dtype=np.float32)
        norm = np.linalg.norm(raw)
        if norm == 0:
            return None
        embedding = raw / norm

    descriptor = np.asarray(embedding, dtype=np.float32).reshape(-1)
    if descriptor.shape != (embedding_dim,):
        logger.warning(f"Skipping face with {descriptor.shape[0]}-d embedding, expected {embedding_dim}")
        return None

    bbox = np.asarray(getattr(face, 'bbox', (0, 0, 0, 0))).astype(int)
    return DetectedFace(
        bbox=BoundingBox(left=int(bbox[0]), top=int(bbox[1]), right=int(bbox[2]), bottom=int(bbox[3])),
        descriptor=descriptor,
        det_score=float(getattr(face, 'det_score', 0.0)),
    )


class DescriptorExtractor:
    """
    Turns raw image bytes into one descriptor per detected face.

    Responsibilities:
        - Decode JPEG/PNG bytes (DecodeError on garbage)
        - Run the lazily loaded model (ModelLoadError when unavailable)
        - Return descriptors in detection order; no face is an empty list

    Does NOT compare descriptors — see FaceMatcher.
    """

    def __init__(self, loader: Optional[ModelLoader] = None, embedding_dim: int = EMBEDDING_DIM):
        self.loader = loader or get_model_loader()
        self.embedding_dim = embedding_dim

    @property
    def available(self) -> bool:
        return self.loader.loaded

    @staticmethod
    def decode(image_bytes: bytes) -> Optional[np.ndarray]:
        """Decode bytes to a BGR frame; None for empty input."""
        if not image_bytes:
            return None
        nparr = np.frombuffer(image_bytes, np.uint8)
        frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
        if frame is None or frame.size == 0:
            raise DecodeError(f"Could not decode image ({len(image_bytes)} bytes)")
        return frame

    def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]:
        """Detect every face in the image and normalize it."""
        frame = self.decode(image_bytes)
        if frame is None:
            return []

        app = self.loader.get()
        faces = []
        for raw in app.get(frame):
            face = normalize_face(raw, self.embedding_dim)
            if face is not None:
                faces.append(face)

        logger.debug(f"Detected {len(faces)} faces in {frame.shape[1]}x{frame.shape[0]} image")
        return faces

    def extract(self, image_bytes: bytes) -> List[np.ndarray]:
        """
        Extract one descriptor per detected face.

        Args:
            image_bytes: raw JPEG/PNG bytes

        Returns:
            List of EMBEDDING_DIM float32 vectors, empty if no face was found
        """
        return [face.descriptor for face in self.detect_faces(image_bytes)]

    def extract_file(self, path) -> List[np.ndarray]:
        with open(path, 'rb') as f:
            return self.extract(f.read())

    def get_stats(self) -> dict:
        return {
            'available': self.available,
            'embedding_dim': self.embedding_dim,
            'model': self.loader.get_stats(),
        }
