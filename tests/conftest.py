"""
Shared fixtures: Flask app on MemoryStore with a stub extractor.

The stub maps exact image bytes to the descriptors "found" in them, so API
tests control face content without running InsightFace.
"""

import io

import numpy as np
import pytest

from app import create_app
from config import TestingConfig
from engines.face_matching import DecodeError, FaceMatcher
from services.memory_store import MemoryStore
from services.recognition_service import RecognitionService

DIM = 512
ADMIN_EMAIL = 'admin@eventlens.test'
ADMIN_PASSWORD = 'admin-pass'


def make_face(identity, jitter=0.0):
    """Unit descriptor for a person; small jitter keeps it close to the same identity."""
    v = np.zeros(DIM, dtype=np.float32)
    v[identity] = 1.0
    v[(identity + 1) % DIM] += jitter
    return v / np.linalg.norm(v)


class FakeExtractor:
    def __init__(self):
        self.images = {}
        self.calls = 0
        self.error = None
        self.available = True

    def register(self, image_bytes, descriptors):
        self.images[image_bytes] = [np.asarray(d, dtype=np.float32) for d in descriptors]
        return image_bytes

    def extract(self, image_bytes):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if not image_bytes:
            return []
        if image_bytes not in self.images:
            raise DecodeError('not an image')
        return list(self.images[image_bytes])

    def get_stats(self):
        return {'available': self.available, 'embedding_dim': DIM}


@pytest.fixture
def face():
    return make_face


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def service(store, extractor):
    svc = RecognitionService(store, extractor=extractor, matcher=FaceMatcher(1.0),
                             max_workers=2, history_workers=2)
    yield svc
    svc.shutdown()


@pytest.fixture
def app(tmp_path, store, extractor):
    tmp_dir = tmp_path / 'tmp'
    tmp_dir.mkdir()

    class AppTestConfig(TestingConfig):
        UPLOAD_DIR = str(tmp_path / 'uploads')
        TMP_DIR = str(tmp_dir)
        ADMIN_EMAIL = 'admin@eventlens.test'
        ADMIN_PASSWORD = 'admin-pass'

    app = create_app(AppTestConfig, db=store, extractor=extractor)
    yield app
    app.recognition_service.shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(client):
    resp = client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert resp.status_code == 200
    return {'Authorization': f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def user_headers(client):
    resp = client.post('/api/auth/register', json={
        'username': 'guest', 'email': 'guest@eventlens.test', 'password': 'guest-pass',
    })
    assert resp.status_code == 201
    return {'Authorization': f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def event(client, admin_headers):
    resp = client.post('/api/events', headers=admin_headers, json={
        'name': 'Summer Wedding', 'date': '2024-06-01T16:00:00', 'pin': '4321',
        'location': 'Lakeside',
    })
    assert resp.status_code == 201
    return resp.get_json()['event']


@pytest.fixture
def image_file():
    """Build a multipart file tuple for the test client."""
    def _make(data, filename='photo.jpg', content_type='image/jpeg'):
        return (io.BytesIO(data), filename, content_type)
    return _make
