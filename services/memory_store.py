"""
In-memory store for EventLens
Same interface as DBManager, backed by dicts. Used for tests and local runs
without PostgreSQL (STORAGE_BACKEND=memory).
"""

import copy
import logging
import threading
from datetime import datetime

logger = logging.getLogger(__name__)


class MemoryStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._tables = {'users': {}, 'events': {}, 'photos': {}, 'photo_history': {}}
        self._counters = {name: 0 for name in self._tables}
        logger.info("In-memory store initialized")

    def _insert(self, table, record):
        with self._lock:
            self._counters[table] += 1
            record = dict(record, id=self._counters[table])
            self._tables[table][record['id']] = record
            return copy.deepcopy(record)

    def _get(self, table, record_id):
        with self._lock:
            record = self._tables[table].get(record_id)
            return copy.deepcopy(record) if record else None

    def _select(self, table, predicate=None):
        with self._lock:
            rows = [r for r in self._tables[table].values() if predicate is None or predicate(r)]
            return copy.deepcopy(rows)

    def _delete(self, table, record_id):
        with self._lock:
            return self._tables[table].pop(record_id, None) is not None

    def close(self):
        pass

    # ==================== USER OPERATIONS ====================

    def get_user_by_id(self, user_id):
        return self._get('users', user_id)

    def get_user_by_email(self, email):
        rows = self._select('users', lambda u: u['email'].lower() == (email or '').lower())
        return rows[0] if rows else None

    def get_user_by_username(self, username):
        rows = self._select('users', lambda u: u['username'].lower() == (username or '').lower())
        return rows[0] if rows else None

    def create_user(self, username, email, password_hash, name=None, is_admin=False):
        return self._insert('users', {
            'username': username,
            'email': email,
            'password_hash': password_hash,
            'name': name,
            'is_admin': bool(is_admin),
            'created_at': datetime.now(),
        })

    # ==================== EVENT OPERATIONS ====================

    def get_events(self):
        return sorted(self._select('events'), key=lambda e: e['date'], reverse=True)

    def get_event(self, event_id):
        return self._get('events', event_id)

    def create_event(self, name, date, pin, created_by, description=None, location=None):
        return self._insert('events', {
            'name': name,
            'description': description,
            'date': date,
            'location': location,
            'pin': pin,
            'created_by': created_by,
            'created_at': datetime.now(),
        })

    def update_event(self, event_id, **kwargs):
        allowed_fields = ['name', 'description', 'date', 'location', 'pin']
        with self._lock:
            event = self._tables['events'].get(event_id)
            if not event:
                return None
            event.update({k: v for k, v in kwargs.items() if k in allowed_fields})
            return copy.deepcopy(event)

    def delete_event(self, event_id):
        """Delete event together with its photos and history"""
        with self._lock:
            for table in ('photo_history', 'photos'):
                rows = self._tables[table]
                for record_id in [i for i, r in rows.items() if r['event_id'] == event_id]:
                    del rows[record_id]
            return self._tables['events'].pop(event_id, None) is not None

    # ==================== PHOTO OPERATIONS ====================

    def get_photos_for_event(self, event_id):
        return sorted(self._select('photos', lambda p: p['event_id'] == event_id),
                      key=lambda p: p['id'])

    def get_photo(self, photo_id):
        return self._get('photos', photo_id)

    def create_photo(self, event_id, url, face_data=None):
        return self._insert('photos', {
            'event_id': event_id,
            'url': url,
            'face_data': face_data,
            'uploaded_at': datetime.now(),
        })

    def set_photo_face_data(self, photo_id, face_data):
        """Set face data on a photo that has none yet; returns False otherwise."""
        with self._lock:
            photo = self._tables['photos'].get(photo_id)
            if not photo or photo['face_data'] is not None:
                return False
            photo['face_data'] = face_data
            return True

    def delete_photo(self, photo_id):
        return self._delete('photos', photo_id)

    # ==================== PHOTO HISTORY OPERATIONS ====================

    def create_history_record(self, user_id, photo_id, event_id):
        return self._insert('photo_history', {
            'user_id': user_id,
            'photo_id': photo_id,
            'event_id': event_id,
            'viewed_at': datetime.now(),
        })

    def get_photo_history(self, user_id):
        rows = self._select('photo_history', lambda h: h['user_id'] == user_id)
        return sorted(rows, key=lambda h: (h['viewed_at'], h['id']), reverse=True)

    # ==================== STATS ====================

    def get_dashboard_stats(self):
        with self._lock:
            photos = self._tables['photos'].values()
            return {
                'total_events': len(self._tables['events']),
                'total_photos': len(photos),
                'photos_with_faces': sum(1 for p in photos if p['face_data'] is not None),
                'history_records': len(self._tables['photo_history']),
            }
