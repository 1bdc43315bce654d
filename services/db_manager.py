"""
Database Manager for EventLens
Handles all database operations using psycopg2
"""

import psycopg2
import psycopg2.extras
import logging
import threading
from datetime import datetime

logger = logging.getLogger(__name__)


class DBManager:
    def __init__(self, database_url):
        """Initialize database connection"""
        self.database_url = database_url
        self.conn = None
        # History writes arrive from several worker threads at once
        self._lock = threading.RLock()
        self.connect()

    def connect(self):
        """Establish database connection"""
        try:
            self.conn = psycopg2.connect(self.database_url)
            logger.info("Database connection established")
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
            logger.info("Database connection closed")

    def execute_query(self, query, params=None, fetch=True, commit=False):
        """Execute a database query"""
        with self._lock:
            try:
                with self.conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                    cursor.execute(query, params)

                    result = cursor.fetchall() if fetch else None

                    if commit:
                        self.conn.commit()

                    return result

            except Exception as e:
                self.conn.rollback()
                logger.error(f"Database error: {e}")
                raise

    def _first(self, results):
        return dict(results[0]) if results else None

    # ==================== USER OPERATIONS ====================

    def get_user_by_id(self, user_id):
        query = "SELECT * FROM users WHERE id = %s"
        return self._first(self.execute_query(query, (user_id,)))

    def get_user_by_email(self, email):
        query = "SELECT * FROM users WHERE LOWER(email) = LOWER(%s)"
        return self._first(self.execute_query(query, (email,)))

    def get_user_by_username(self, username):
        query = "SELECT * FROM users WHERE LOWER(username) = LOWER(%s)"
        return self._first(self.execute_query(query, (username,)))

    def create_user(self, username, email, password_hash, name=None, is_admin=False):
        """Add new user"""
        query = """
            INSERT INTO users (username, email, password_hash, name, is_admin)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
        """
        return self._first(self.execute_query(
            query, (username, email, password_hash, name, is_admin), commit=True
        ))

    # ==================== EVENT OPERATIONS ====================

    def get_events(self):
        query = "SELECT * FROM events ORDER BY date DESC"
        return [dict(r) for r in self.execute_query(query)]

    def get_event(self, event_id):
        query = "SELECT * FROM events WHERE id = %s"
        return self._first(self.execute_query(query, (event_id,)))

    def create_event(self, name, date, pin, created_by, description=None, location=None):
        query = """
            INSERT INTO events (name, description, date, location, pin, created_by)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
        """
        return self._first(self.execute_query(
            query, (name, description, date, location, pin, created_by), commit=True
        ))

    def update_event(self, event_id, **kwargs):
        """Update event information"""
        allowed_fields = ['name', 'description', 'date', 'location', 'pin']
        updates = []
        params = []

        for field, value in kwargs.items():
            if field in allowed_fields:
                updates.append(f"{field} = %s")
                params.append(value)

        if not updates:
            return self.get_event(event_id)

        params.append(event_id)
        query = f"UPDATE events SET {', '.join(updates)} WHERE id = %s RETURNING *"
        return self._first(self.execute_query(query, params, commit=True))

    def delete_event(self, event_id):
        """Delete event together with its photos and history"""
        with self._lock:
            self.execute_query("DELETE FROM photo_history WHERE event_id = %s", (event_id,), fetch=False)
            self.execute_query("DELETE FROM photos WHERE event_id = %s", (event_id,), fetch=False)
            result = self.execute_query(
                "DELETE FROM events WHERE id = %s RETURNING id", (event_id,), commit=True
            )
        return bool(result)

    # ==================== PHOTO OPERATIONS ====================

    def get_photos_for_event(self, event_id):
        query = "SELECT * FROM photos WHERE event_id = %s ORDER BY id"
        return [dict(r) for r in self.execute_query(query, (event_id,))]

    def get_photo(self, photo_id):
        query = "SELECT * FROM photos WHERE id = %s"
        return self._first(self.execute_query(query, (photo_id,)))

    def create_photo(self, event_id, url, face_data=None):
        """Add new photo; face_data is the serialized descriptor list or None"""
        query = """
            INSERT INTO photos (event_id, url, face_data)
            VALUES (%s, %s, %s)
            RETURNING *
        """
        return self._first(self.execute_query(query, (event_id, url, face_data), commit=True))

    def set_photo_face_data(self, photo_id, face_data):
        """Set face data on a photo that has none yet"""
        query = """
            UPDATE photos SET face_data = %s
            WHERE id = %s AND face_data IS NULL
            RETURNING id
        """
        return bool(self.execute_query(query, (face_data, photo_id), commit=True))

    def delete_photo(self, photo_id):
        query = "DELETE FROM photos WHERE id = %s RETURNING id"
        return bool(self.execute_query(query, (photo_id,), commit=True))

    # ==================== PHOTO HISTORY OPERATIONS ====================

    def create_history_record(self, user_id, photo_id, event_id, viewed_at=None):
        """Append a photo history record (no dedup)"""
        if viewed_at is None:
            viewed_at = datetime.now()

        query = """
            INSERT INTO photo_history (user_id, photo_id, event_id, viewed_at)
            VALUES (%s, %s, %s, %s)
            RETURNING *
        """
        return self._first(self.execute_query(
            query, (user_id, photo_id, event_id, viewed_at), commit=True
        ))

    def get_photo_history(self, user_id):
        query = """
            SELECT * FROM photo_history
            WHERE user_id = %s
            ORDER BY viewed_at DESC, id DESC
        """
        return [dict(r) for r in self.execute_query(query, (user_id,))]

    # ==================== STATS ====================

    def get_dashboard_stats(self):
        query = """
            SELECT
                (SELECT COUNT(*) FROM events) as total_events,
                (SELECT COUNT(*) FROM photos) as total_photos,
                (SELECT COUNT(*) FROM photos WHERE face_data IS NOT NULL) as photos_with_faces,
                (SELECT COUNT(*) FROM photo_history) as history_records
        """
        return self._first(self.execute_query(query))
