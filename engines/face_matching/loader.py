"""
Model Loader — process-wide, lazily initialized InsightFace model.
Model weights are looked up in an ordered list of sources (bundled directory,
secondary directory, remote archive); the first source that yields a working
model wins. Loading is single-flight: concurrent first callers wait for the
one in-flight load and share its outcome.
"""

import io
import logging
import threading
import time
import zipfile
from pathlib import Path
from typing import List, Optional, Sequence

import requests

from engines.face_matching.errors import ModelLoadError

logger = logging.getLogger(__name__)

# Lazy import: InsightFace may not be installed in all environments
try:
    from insightface.app import FaceAnalysis
    INSIGHTFACE_AVAILABLE = True
except ImportError:
    FaceAnalysis = None
    INSIGHTFACE_AVAILABLE = False
    logger.warning("InsightFace not installed — face extraction unavailable")

PROVIDER_OPTIONS = [
    ['CUDAExecutionProvider', 'CPUExecutionProvider'],
    ['CPUExecutionProvider'],
]


def prepare_face_analysis(model_name: str, root: Path, gpu_id: int = 0,
                          det_size: tuple = (640, 640)):
    """
    Build a prepared FaceAnalysis app from weights under root/models/<model_name>.
    Tries GPU first, falls back to CPU.
    """
    if not INSIGHTFACE_AVAILABLE:
        raise RuntimeError("InsightFace is not installed")

    last_error = None
    for providers in PROVIDER_OPTIONS:
        try:
            app = FaceAnalysis(name=model_name, root=str(root), providers=providers)
            app.prepare(ctx_id=gpu_id, det_size=det_size)
            logger.info(f"FaceAnalysis {model_name} prepared from {root} with {providers}")
            return app
        except Exception as e:
            logger.warning(f"FaceAnalysis init failed with {providers}: {e}")
            last_error = e
    raise RuntimeError(f"could not initialize with any provider: {last_error}")


class ModelSource:
    """One place model weights can come from."""

    name = 'source'

    def load(self):
        raise NotImplementedError


class LocalModelSource(ModelSource):
    """Weights already unpacked on disk under root/models/<model_name>."""

    def __init__(self, root, model_name: str = 'buffalo_l', gpu_id: int = 0,
                 det_size: tuple = (640, 640), name: str = 'local'):
        self.root = Path(root).expanduser()
        self.model_name = model_name
        self.gpu_id = gpu_id
        self.det_size = det_size
        self.name = name

    @property
    def model_dir(self) -> Path:
        return self.root / 'models' / self.model_name

    def load(self):
        # FaceAnalysis downloads missing weights by itself; local sources must not
        if not self.model_dir.is_dir() or not any(self.model_dir.glob('*.onnx')):
            raise FileNotFoundError(f"no ONNX weights in {self.model_dir}")
        return prepare_face_analysis(self.model_name, self.root, self.gpu_id, self.det_size)


class RemoteModelSource(ModelSource):
    """Weights fetched as a zip archive and unpacked into a cache directory."""

    def __init__(self, url: str, cache_root, model_name: str = 'buffalo_l',
                 timeout: float = 120.0, gpu_id: int = 0,
                 det_size: tuple = (640, 640), name: str = 'remote'):
        self.url = url
        self.cache_root = Path(cache_root).expanduser()
        self.model_name = model_name
        self.timeout = timeout
        self.gpu_id = gpu_id
        self.det_size = det_size
        self.name = name

    def download(self) -> Path:
        target = self.cache_root / 'models' / self.model_name
        logger.info(f"Downloading face model from {self.url} (timeout {self.timeout}s)")
        response = requests.get(self.url, timeout=self.timeout)
        response.raise_for_status()
        target.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
            for member in archive.infolist():
                if member.is_dir() or not member.filename.endswith('.onnx'):
                    continue
                # Archives may or may not nest files under a model folder
                (target / Path(member.filename).name).write_bytes(archive.read(member))
        logger.info(f"Face model unpacked to {target}")
        return target

    def load(self):
        self.download()
        return prepare_face_analysis(self.model_name, self.cache_root, self.gpu_id, self.det_size)


class ModelLoader:
    """
    Single-flight lazy holder for the face model.

    get() returns the loaded model, loading it on first use. A failed load is
    remembered for retry_after seconds so a burst of requests does not
    hammer every source again.
    """

    def __init__(self, sources: Sequence[ModelSource], retry_after: float = 60.0):
        self.sources: List[ModelSource] = list(sources)
        self.retry_after = retry_after
        self._lock = threading.Lock()
        self._model = None
        self._error: Optional[ModelLoadError] = None
        self._failed_at = 0.0
        self.load_count = 0

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def get(self):
        model = self._model
        if model is not None:
            return model

        with self._lock:
            if self._model is not None:
                return self._model
            if self._error is not None and time.monotonic() - self._failed_at < self.retry_after:
                raise self._error

            try:
                self._model = self._load()
                self._error = None
            except ModelLoadError as e:
                self._error = e
                self._failed_at = time.monotonic()
                raise
            return self._model

    def _load(self):
        self.load_count += 1
        failures = []
        for source in self.sources:
            try:
                model = source.load()
                logger.info(f"Face model loaded from {source.name} source")
                return model
            except Exception as e:
                logger.warning(f"Face model source '{source.name}' failed: {e}")
                failures.append(f"{source.name}: {e}")

        logger.error("Face model could not be loaded from any source")
        raise ModelLoadError("All face model sources failed — " + "; ".join(failures))

    def reset(self) -> None:
        """Forget the loaded model or cached failure."""
        with self._lock:
            self._model = None
            self._error = None
            self._failed_at = 0.0

    def get_stats(self) -> dict:
        return {
            'loaded': self.loaded,
            'sources': [s.name for s in self.sources],
            'last_error': str(self._error) if self._error else None,
        }


def build_model_loader(config) -> ModelLoader:
    """Create a loader with the bundled → secondary → remote source order."""
    get = config.get if isinstance(config, dict) else lambda key: getattr(config, key)
    model_name = get('FACE_MODEL_NAME')
    det = get('FACE_DET_SIZE')
    common = dict(model_name=model_name, gpu_id=get('FACE_GPU_ID'), det_size=(det, det))

    sources = [
        LocalModelSource(get('FACE_MODEL_DIR'), name='bundled', **common),
        LocalModelSource(get('FACE_MODEL_FALLBACK_DIR'), name='secondary', **common),
    ]
    if get('FACE_MODEL_URL'):
        sources.append(RemoteModelSource(
            get('FACE_MODEL_URL'),
            cache_root=get('FACE_MODEL_FALLBACK_DIR'),
            timeout=get('FACE_MODEL_DOWNLOAD_TIMEOUT'),
            name='remote',
            **common,
        ))
    return ModelLoader(sources, retry_after=get('FACE_MODEL_RETRY_SECONDS'))


# ---------- Global Instance ----------
_loader: Optional[ModelLoader] = None
_loader_lock = threading.Lock()


def get_model_loader(config=None) -> ModelLoader:
    """Get or create the process-wide model loader."""
    global _loader
    if _loader is None:
        with _loader_lock:
            if _loader is None:
                if config is None:
                    from config import Config
                    config = Config
                _loader = build_model_loader(config)
    return _loader
