"""Events API — listing, PIN access and organizer CRUD"""
import logging
from datetime import datetime, timezone
from flask import Blueprint, request, jsonify, current_app

from api.auth import admin_required, current_user_id
from api.serializers import serialize_event

logger = logging.getLogger(__name__)
events_bp = Blueprint('events', __name__)


def parse_event_date(value):
    """
    Accept ISO-8601 dates ('2024-06-01', '2024-06-01T18:00:00', '...Z', '...+02:00').
    Offsets are converted to naive UTC, matching the TIMESTAMP column.
    """
    if not value:
        raise ValueError("Event date is required")
    if isinstance(value, str) and value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validate_event_data(data, partial=False):
    errors = []
    if not partial or 'name' in data:
        if not (data.get('name') or '').strip():
            errors.append("Event name is required")
    if not partial or 'pin' in data:
        pin = str(data.get('pin') or '')
        if len(pin) < 4:
            errors.append("PIN must be at least 4 characters")
    if not partial or 'date' in data:
        try:
            parse_event_date(data.get('date'))
        except (TypeError, ValueError):
            errors.append("A valid ISO date is required")
    return errors


@events_bp.route('', methods=['GET'])
def get_events():
    try:
        events = current_app.db.get_events()
        return jsonify({"events": [serialize_event(e) for e in events]})
    except Exception as e:
        logger.error(f"Error fetching events: {e}")
        return jsonify({"error": str(e)}), 500


@events_bp.route('/<int:event_id>', methods=['GET'])
def get_event(event_id):
    try:
        event = current_app.db.get_event(event_id)
        if not event:
            return jsonify({"error": "Event not found"}), 404
        return jsonify({"event": serialize_event(event)})
    except Exception as e:
        return jsonify({"error": str(e)}), 500


@events_bp.route('/access', methods=['POST'])
def access_event():
    """Verify an event PIN"""
    data = request.get_json(silent=True) or {}
    event_id = data.get('event_id')
    pin = data.get('pin')

    if not event_id or not pin:
        return jsonify({"error": "Event ID and PIN are required"}), 400

    try:
        event = current_app.db.get_event(int(event_id))
        if not event:
            return jsonify({"error": "Event not found"}), 404

        if str(event['pin']) != str(pin):
            logger.info(f"Rejected PIN for event {event_id}")
            return jsonify({"error": "Invalid PIN"}), 403

        return jsonify({"message": "Access granted", "event": serialize_event(event)})

    except (TypeError, ValueError):
        return jsonify({"error": "Invalid event ID"}), 400
    except Exception as e:
        return jsonify({"error": str(e)}), 500


@events_bp.route('', methods=['POST'])
@admin_required()
def create_event():
    try:
        data = request.get_json(silent=True) or {}
        errors = validate_event_data(data)
        if errors:
            return jsonify({"error": "Validation failed", "details": errors}), 400

        event = current_app.db.create_event(
            name=data['name'].strip(),
            date=parse_event_date(data['date']),
            pin=str(data['pin']),
            created_by=current_user_id(),
            description=data.get('description'),
            location=data.get('location'),
        )
        logger.info(f"Created event {event['id']}: {event['name']}")
        return jsonify({"message": "Event created", "event": serialize_event(event)}), 201

    except Exception as e:
        logger.error(f"Error creating event: {e}")
        return jsonify({"error": str(e)}), 500


@events_bp.route('/<int:event_id>', methods=['PUT'])
@admin_required()
def update_event(event_id):
    try:
        data = request.get_json(silent=True) or {}
        errors = validate_event_data(data, partial=True)
        if errors:
            return jsonify({"error": "Validation failed", "details": errors}), 400

        updates = {k: data[k] for k in ('name', 'description', 'location') if k in data}
        if 'date' in data:
            updates['date'] = parse_event_date(data['date'])
        if 'pin' in data:
            updates['pin'] = str(data['pin'])

        db = current_app.db
        if not db.get_event(event_id):
            return jsonify({"error": "Event not found"}), 404

        event = db.update_event(event_id, **updates)
        return jsonify({"message": "Event updated", "event": serialize_event(event)})

    except Exception as e:
        logger.error(f"Error updating event {event_id}: {e}")
        return jsonify({"error": str(e)}), 500


@events_bp.route('/<int:event_id>', methods=['DELETE'])
@admin_required()
def delete_event(event_id):
    try:
        db = current_app.db
        if not db.get_event(event_id):
            return jsonify({"error": "Event not found"}), 404

        from api.photos import delete_photo_file
        for photo in db.get_photos_for_event(event_id):
            delete_photo_file(photo)

        db.delete_event(event_id)
        logger.info(f"Deleted event {event_id}")
        return jsonify({"message": "Event deleted"})

    except Exception as e:
        logger.error(f"Error deleting event {event_id}: {e}")
        return jsonify({"error": str(e)}), 500


@events_bp.route('/stats', methods=['GET'])
@admin_required()
def get_stats():
    """Organizer dashboard counters"""
    try:
        stats = current_app.db.get_dashboard_stats()
        stats['recognition'] = current_app.recognition_service.get_stats()
        return jsonify(stats)
    except Exception as e:
        return jsonify({"error": str(e)}), 500
