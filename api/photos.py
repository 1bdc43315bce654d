"""Photos API — event gallery and organizer uploads"""
import os
import logging
from flask import Blueprint, jsonify, current_app

from api.auth import admin_required
from api.serializers import serialize_photo
from services.uploads import (
    UploadError, get_uploaded_file, remove_file, store_upload, validate_image_upload,
)

logger = logging.getLogger(__name__)
photos_bp = Blueprint('photos', __name__)

UPLOAD_URL_PREFIX = '/uploads/'


def delete_photo_file(photo):
    """Remove the stored image behind a photo record."""
    url = photo.get('url') or ''
    if not url.startswith(UPLOAD_URL_PREFIX):
        return
    filename = os.path.basename(url)
    remove_file(os.path.join(current_app.config['UPLOAD_DIR'], filename))


@photos_bp.route('/events/<int:event_id>/photos', methods=['GET'])
def get_event_photos(event_id):
    try:
        db = current_app.db
        if not db.get_event(event_id):
            return jsonify({"error": "Event not found"}), 404

        photos = db.get_photos_for_event(event_id)
        return jsonify({"photos": [serialize_photo(p) for p in photos]})
    except Exception as e:
        logger.error(f"Error fetching photos for event {event_id}: {e}")
        return jsonify({"error": str(e)}), 500


@photos_bp.route('/events/<int:event_id>/photos', methods=['POST'])
@admin_required()
def upload_photo(event_id):
    """
    Upload one event photo (multipart field 'photo').
    Face descriptors are extracted on the way in; a photo without a
    detectable face is still stored.
    """
    try:
        db = current_app.db
        if not db.get_event(event_id):
            return jsonify({"error": "Event not found"}), 404

        upload = get_uploaded_file('photo')
        data = validate_image_upload(upload, current_app.config['MAX_UPLOAD_BYTES'])

        filename, path = store_upload(data, current_app.config['UPLOAD_DIR'], upload.filename)
        try:
            photo = current_app.recognition_service.ingest_photo(
                event_id, f"{UPLOAD_URL_PREFIX}{filename}", data
            )
        except Exception:
            remove_file(path)
            raise

        return jsonify({"message": "Photo uploaded", "photo": serialize_photo(photo)}), 201

    except UploadError as e:
        return jsonify({"error": e.message}), e.status_code
    except Exception as e:
        logger.error(f"Error uploading photo to event {event_id}: {e}")
        return jsonify({"error": str(e)}), 500


@photos_bp.route('/photos/<int:photo_id>', methods=['DELETE'])
@admin_required()
def delete_photo(photo_id):
    try:
        db = current_app.db
        photo = db.get_photo(photo_id)
        if not photo:
            return jsonify({"error": "Photo not found"}), 404

        db.delete_photo(photo_id)
        delete_photo_file(photo)
        logger.info(f"Deleted photo {photo_id}")
        return jsonify({"message": "Photo deleted"})

    except Exception as e:
        logger.error(f"Error deleting photo {photo_id}: {e}")
        return jsonify({"error": str(e)}), 500
