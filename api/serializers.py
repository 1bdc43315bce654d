"""JSON shapes for API responses"""
import json
from datetime import date, datetime


def _iso(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def face_count(face_data):
    """Number of stored descriptors on a photo record."""
    if face_data is None:
        return 0
    raw = json.loads(face_data) if isinstance(face_data, (str, bytes)) else face_data
    return len(raw) if isinstance(raw, list) else 0


def serialize_user(user):
    return {
        'id': user['id'],
        'username': user['username'],
        'email': user['email'],
        'name': user.get('name'),
        'is_admin': bool(user.get('is_admin')),
    }


def serialize_event(event):
    # PIN stays server-side
    return {
        'id': event['id'],
        'name': event['name'],
        'description': event.get('description'),
        'date': _iso(event.get('date')),
        'location': event.get('location'),
        'created_by': event.get('created_by'),
        'created_at': _iso(event.get('created_at')),
    }


def serialize_photo(photo):
    # Raw descriptors are never sent to clients
    try:
        faces = face_count(photo.get('face_data'))
    except ValueError:
        faces = 0
    return {
        'id': photo['id'],
        'event_id': photo['event_id'],
        'url': photo['url'],
        'uploaded_at': _iso(photo.get('uploaded_at')),
        'face_count': faces,
    }
