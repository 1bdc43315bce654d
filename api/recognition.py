"""Face recognition API — selfie search and the user's photo history"""
import os
import logging
from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required

from api.auth import current_user_id
from api.serializers import serialize_photo
from services.recognition_service import RecognitionError
from services.uploads import (
    UploadError, get_uploaded_file, transient_upload, validate_image_upload,
)

logger = logging.getLogger(__name__)
recognition_bp = Blueprint('recognition', __name__)


@recognition_bp.route('/events/<int:event_id>/face-recognition', methods=['POST'])
@jwt_required()
def face_recognition(event_id):
    """
    Match a selfie (multipart field 'selfie') against the event's photos.
    Every matched photo is added to the caller's photo history.
    """
    try:
        if not current_app.db.get_event(event_id):
            return jsonify({"error": "Event not found"}), 404

        upload = get_uploaded_file('selfie')
        data = validate_image_upload(upload, current_app.config['MAX_UPLOAD_BYTES'])
        suffix = os.path.splitext(upload.filename)[1].lower() or '.jpg'

        service = current_app.recognition_service
        with transient_upload(data, suffix=suffix, directory=current_app.config['TMP_DIR']) as path:
            result = service.recognize_file(event_id, current_user_id(), path)

        body = result.to_dict()
        body['photos'] = [serialize_photo(p) for p in result.photos]
        return jsonify(body)

    except UploadError as e:
        return jsonify({"error": e.message}), e.status_code
    except RecognitionError as e:
        return jsonify({"error": e.message}), e.status_code
    except Exception as e:
        logger.error(f"Face recognition failed for event {event_id}: {e}")
        return jsonify({"error": "Failed to process face recognition"}), 500


@recognition_bp.route('/user/photo-history', methods=['GET'])
@jwt_required()
def photo_history():
    try:
        db = current_app.db
        history = []
        events = {}

        for record in db.get_photo_history(current_user_id()):
            photo = db.get_photo(record['photo_id'])
            if not photo:
                continue  # deleted since

            event_id = record['event_id']
            if event_id not in events:
                events[event_id] = db.get_event(event_id)
            event = events[event_id]

            entry = serialize_photo(photo)
            entry['viewed_at'] = record['viewed_at'].isoformat()
            entry['event'] = {'id': event['id'], 'name': event['name']} if event else None
            history.append(entry)

        return jsonify({"photos": history})

    except Exception as e:
        logger.error(f"Error fetching photo history: {e}")
        return jsonify({"error": str(e)}), 500
