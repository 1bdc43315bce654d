"""
Upload handling
Validation of multipart image uploads and temp-file lifecycle for selfies.
"""

import logging
import os
import tempfile
import uuid
from contextlib import contextmanager

from flask import request
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'.jpg', '.jpeg', '.png'}
ALLOWED_MIME_TYPES = {'image/jpeg', 'image/png'}


class UploadError(Exception):
    """Rejected upload, carries the HTTP status to answer with."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def get_uploaded_file(field):
    """Fetch a multipart file from the current request."""
    try:
        return request.files.get(field)
    except RequestEntityTooLarge:
        raise UploadError('Image exceeds the upload size limit', 413)


def validate_image_upload(file_storage, max_bytes):
    """
    Check an uploaded image and return its bytes.

    Raises:
        UploadError: missing file (400), wrong type (400), too large (413)
    """
    if file_storage is None or not file_storage.filename:
        raise UploadError('No image file provided', 400)

    ext = os.path.splitext(file_storage.filename)[1].lower()
    mimetype = (file_storage.mimetype or '').lower()
    if ext not in ALLOWED_EXTENSIONS or mimetype not in ALLOWED_MIME_TYPES:
        raise UploadError('Only JPEG and PNG images are allowed', 400)

    data = file_storage.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise UploadError(f'Image exceeds the {max_bytes // (1024 * 1024)}MB limit', 413)
    if not data:
        raise UploadError('Uploaded file is empty', 400)

    return data


def store_upload(data, upload_dir, original_filename):
    """Write an event photo under upload_dir with a unique name. Returns (filename, path)."""
    ext = os.path.splitext(secure_filename(original_filename or ''))[1].lower() or '.jpg'
    filename = f"{uuid.uuid4().hex}{ext}"
    os.makedirs(upload_dir, exist_ok=True)
    path = os.path.join(upload_dir, filename)
    with open(path, 'wb') as f:
        f.write(data)
    logger.debug(f"Stored upload {filename} ({len(data)} bytes)")
    return filename, path


def remove_file(path):
    """Delete a file if present; failures are logged."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")


@contextmanager
def transient_upload(data, suffix='.jpg', directory=None):
    """
    Write data to a temp file for the duration of the block.

    The file is removed on every exit path, including exceptions.
    """
    fd, path = tempfile.mkstemp(prefix='selfie-', suffix=suffix, dir=directory)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        yield path
    finally:
        remove_file(path)
