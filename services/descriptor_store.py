"""
Descriptor Store
Persists face descriptor lists on photo records as JSON arrays of floats.
"""

import json
import logging
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


def serialize_descriptors(descriptors) -> Optional[str]:
    """
    Serialize a list of descriptors to a JSON string.

    float32 values are widened to Python floats, whose repr round-trips
    back to the same float32 exactly. None stays None.
    """
    if descriptors is None:
        return None
    return json.dumps([np.asarray(d, dtype=np.float32).tolist() for d in descriptors])


def deserialize_descriptors(face_data) -> Optional[List[np.ndarray]]:
    """Inverse of serialize_descriptors. Raises ValueError on malformed data."""
    if face_data is None:
        return None

    # JSONB columns come back already decoded
    raw = json.loads(face_data) if isinstance(face_data, (str, bytes)) else face_data
    if not isinstance(raw, list):
        raise ValueError(f"Expected a list of descriptors, got {type(raw).__name__}")

    descriptors = []
    for item in raw:
        if not isinstance(item, list) or not item:
            raise ValueError("Each descriptor must be a non-empty list of numbers")
        try:
            vector = np.asarray(item, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid descriptor values: {e}") from e
        if vector.ndim != 1:
            raise ValueError("Descriptors must be flat arrays")
        descriptors.append(vector)

    lengths = {len(d) for d in descriptors}
    if len(lengths) > 1:
        raise ValueError(f"Ragged descriptor list with lengths {sorted(lengths)}")
    return descriptors


class DescriptorStore:
    """Reads and writes descriptors through a repository (DBManager or MemoryStore)."""

    def __init__(self, repository):
        self.repository = repository

    def create_photo(self, event_id, url, descriptors=None):
        return self.repository.create_photo(event_id, url, serialize_descriptors(descriptors))

    def save_photo_descriptors(self, photo_id, descriptors):
        """
        Attach descriptors to a photo that has none yet.

        Raises:
            ValueError: photo missing, or its descriptors are already set
        """
        if descriptors is None:
            return

        photo = self.repository.get_photo(photo_id)
        if not photo:
            raise ValueError(f"Photo {photo_id} not found")
        if photo.get('face_data') is not None:
            raise ValueError(f"Photo {photo_id} already has face data")

        if not self.repository.set_photo_face_data(photo_id, serialize_descriptors(descriptors)):
            # Lost a race with another writer
            raise ValueError(f"Photo {photo_id} already has face data")

    def load_photo_descriptors(self, photo_id):
        photo = self.repository.get_photo(photo_id)
        if not photo:
            return None
        return deserialize_descriptors(photo.get('face_data'))

    def candidates_for_event(self, event_id):
        """
        Load an event's photos and their descriptors.

        Returns:
            (photos, candidates) where candidates is [(photo_id, descriptors)]
            for photos with face data, in repository order
        """
        photos = self.repository.get_photos_for_event(event_id)
        candidates = []
        for photo in photos:
            if photo.get('face_data') is None:
                continue
            try:
                candidates.append((photo['id'], deserialize_descriptors(photo['face_data'])))
            except ValueError as e:
                logger.warning(f"Skipping photo {photo['id']} with unreadable face data: {e}")

        logger.debug(f"Event {event_id}: {len(candidates)}/{len(photos)} photos have face data")
        return photos, candidates
