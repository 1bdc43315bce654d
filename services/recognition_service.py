"""
Recognition Service
Orchestrates the selfie path (extract -> match -> history) and the photo
ingestion path (extract -> store descriptors) on top of the face_matching engine.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from engines.face_matching import (
    DecodeError, DescriptorExtractor, FaceMatcher, HistoryWriteError, ModelLoadError,
)
from services.descriptor_store import DescriptorStore

logger = logging.getLogger(__name__)

MULTI_FACE_POLICIES = ('first', 'reject')


class RecognitionState(Enum):
    RECEIVED_SELFIE = 'received_selfie'
    EXTRACTING = 'extracting'
    NO_FACE_FOUND = 'no_face_found'
    EXTRACTION_FAILED = 'extraction_failed'
    FACES_EXTRACTED = 'faces_extracted'
    MATCHING = 'matching'
    RECORDING_HISTORY = 'recording_history'
    COMPLETED = 'completed'


class RecognitionError(Exception):
    """Selfie could not be processed; status_code is the HTTP answer."""
    status_code = 500
    state = None

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NoFaceDetected(RecognitionError):
    status_code = 400
    state = RecognitionState.NO_FACE_FOUND

    def __init__(self, message='No face detected in the selfie'):
        super().__init__(message)


class MultipleFacesDetected(RecognitionError):
    status_code = 400
    state = RecognitionState.FACES_EXTRACTED

    def __init__(self, message='Multiple faces detected, please use a selfie with only your face'):
        super().__init__(message)


class ExtractionFailed(RecognitionError):
    status_code = 503
    state = RecognitionState.EXTRACTION_FAILED

    @classmethod
    def from_error(cls, error):
        if isinstance(error, DecodeError):
            return cls('Could not read the uploaded image', 400)
        return cls('Face recognition is temporarily unavailable, please try again later', 503)


@dataclass
class RecognitionResult:
    total_photos: int = 0
    photos: List[dict] = field(default_factory=list)
    history_failures: int = 0
    state: RecognitionState = RecognitionState.COMPLETED

    @property
    def matching_photos(self) -> int:
        return len(self.photos)

    @property
    def message(self) -> str:
        if not self.photos:
            return 'No matching photos found'
        return f"Found {self.matching_photos} matching photos"

    def to_dict(self) -> dict:
        return {
            'message': self.message,
            'totalPhotos': self.total_photos,
            'matchingPhotos': self.matching_photos,
            'photos': self.photos,
        }


class RecognitionService:
    """
    Runs face recognition for an event.

    Extraction and matching run on a bounded worker pool so the calling
    request thread only waits on a future. History writes for the matches
    go to a second pool and are awaited before the result is returned.
    """

    def __init__(self, repository, extractor: Optional[DescriptorExtractor] = None,
                 matcher: Optional[FaceMatcher] = None, max_workers: int = 2,
                 history_workers: int = 4, multi_face_policy: str = 'first'):
        if multi_face_policy not in MULTI_FACE_POLICIES:
            raise ValueError(f"Unknown multi-face policy: {multi_face_policy}")

        self.repository = repository
        self.store = DescriptorStore(repository)
        self.extractor = extractor or DescriptorExtractor()
        self.matcher = matcher or FaceMatcher()
        self.multi_face_policy = multi_face_policy

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='face')
        self._history_executor = ThreadPoolExecutor(max_workers=history_workers,
                                                    thread_name_prefix='history')

        self._stats_lock = threading.Lock()
        self.recognitions = 0
        self.photos_ingested = 0
        self.history_failures = 0

    def _count(self, name, amount=1):
        with self._stats_lock:
            setattr(self, name, getattr(self, name) + amount)

    def _transition(self, state, event_id):
        logger.debug(f"Recognition for event {event_id}: {state.value}")
        return state

    # ==================== SELFIE PATH ====================

    def recognize(self, event_id, user_id, selfie_bytes) -> RecognitionResult:
        """
        Find the event photos containing the selfie's face and record them
        in the user's photo history.

        Raises:
            NoFaceDetected, MultipleFacesDetected, ExtractionFailed
        """
        self._transition(RecognitionState.RECEIVED_SELFIE, event_id)
        return self._executor.submit(self._recognize, event_id, user_id, selfie_bytes).result()

    def recognize_file(self, event_id, user_id, path) -> RecognitionResult:
        with open(path, 'rb') as f:
            return self.recognize(event_id, user_id, f.read())

    def _recognize(self, event_id, user_id, selfie_bytes):
        self._transition(RecognitionState.EXTRACTING, event_id)
        try:
            descriptors = self.extractor.extract(selfie_bytes)
        except Exception as e:
            self._transition(RecognitionState.EXTRACTION_FAILED, event_id)
            if isinstance(e, ModelLoadError):
                logger.error(f"Face model unavailable: {e}")
            else:
                logger.warning(f"Selfie extraction failed: {e}")
            raise ExtractionFailed.from_error(e) from e

        if not descriptors:
            self._transition(RecognitionState.NO_FACE_FOUND, event_id)
            raise NoFaceDetected()

        self._transition(RecognitionState.FACES_EXTRACTED, event_id)
        if len(descriptors) > 1:
            if self.multi_face_policy == 'reject':
                raise MultipleFacesDetected()
            logger.info(f"Selfie has {len(descriptors)} faces, using the first one")
        query = descriptors[0]

        self._transition(RecognitionState.MATCHING, event_id)
        photos, candidates = self.store.candidates_for_event(event_id)
        match = self.matcher.match(query, candidates, total_photos=len(photos))

        matched_ids = set(match.photo_ids)
        matched_photos = [p for p in photos if p['id'] in matched_ids]

        self._transition(RecognitionState.RECORDING_HISTORY, event_id)
        failures = self._record_history(user_id, event_id, match.photo_ids)

        state = self._transition(RecognitionState.COMPLETED, event_id)
        self._count('recognitions')
        logger.info(
            f"Recognition for user {user_id} in event {event_id}: "
            f"{match.count}/{len(photos)} photos matched"
        )
        return RecognitionResult(
            total_photos=len(photos),
            photos=matched_photos,
            history_failures=failures,
            state=state,
        )

    def _write_history(self, user_id, photo_id, event_id):
        try:
            return self.repository.create_history_record(user_id, photo_id, event_id)
        except Exception as e:
            raise HistoryWriteError(photo_id, e) from e

    def _record_history(self, user_id, event_id, photo_ids) -> int:
        """Write one history row per matched photo; returns the number of failures."""
        if not photo_ids:
            return 0

        futures = [
            self._history_executor.submit(self._write_history, user_id, photo_id, event_id)
            for photo_id in photo_ids
        ]
        wait(futures)

        failures = 0
        for future in futures:
            error = future.exception()
            if error is not None:
                failures += 1
                logger.error(f"History write failed: {error}")

        if failures:
            self._count('history_failures', failures)
        return failures

    # ==================== UPLOAD PATH ====================

    def extract_descriptors(self, image_bytes):
        """Descriptors for an uploaded photo, or None when none could be extracted."""
        try:
            descriptors = self._executor.submit(self.extractor.extract, image_bytes).result()
        except Exception as e:
            logger.error(f"Face extraction failed, storing photo without face data: {e}")
            return None
        return descriptors or None

    def ingest_photo(self, event_id, url, image_bytes):
        """Create a photo record with whatever descriptors could be extracted."""
        descriptors = self.extract_descriptors(image_bytes)
        photo = self.store.create_photo(event_id, url, descriptors)
        self._count('photos_ingested')
        logger.info(
            f"Photo {photo['id']} added to event {event_id} "
            f"with {len(descriptors) if descriptors else 0} faces"
        )
        return photo

    def get_stats(self) -> dict:
        return {
            'recognitions': self.recognitions,
            'photos_ingested': self.photos_ingested,
            'history_failures': self.history_failures,
            'multi_face_policy': self.multi_face_policy,
            'matcher': self.matcher.get_stats(),
        }

    def shutdown(self):
        self._executor.shutdown(wait=True)
        self._history_executor.shutdown(wait=True)
