"""Authentication API — attendee registration, login and the admin guard"""
import re
import logging
from functools import wraps
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import (
    create_access_token, get_jwt, get_jwt_identity, jwt_required, verify_jwt_in_request,
)
import bcrypt

from api.serializers import serialize_user

logger = logging.getLogger(__name__)
auth_bp = Blueprint('auth', __name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def hash_password(password, rounds=None):
    rounds = rounds or current_app.config['BCRYPT_ROUNDS']
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds)).decode('utf-8')


def check_password(password, password_hash):
    return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))


def issue_token(user):
    return create_access_token(
        identity=str(user['id']),
        additional_claims={'is_admin': bool(user.get('is_admin'))},
    )


def current_user_id():
    return int(get_jwt_identity())


def admin_required():
    """Like jwt_required(), but the token must belong to an organizer."""
    def wrapper(fn):
        @wraps(fn)
        def decorator(*args, **kwargs):
            verify_jwt_in_request()
            if not get_jwt().get('is_admin'):
                return jsonify({"error": "Admin access required"}), 403
            return fn(*args, **kwargs)
        return decorator
    return wrapper


def validate_registration(username, email, password):
    errors = []
    if not username or len(username.strip()) < 3:
        errors.append("Username must be at least 3 characters")
    if not email or not EMAIL_RE.match(email):
        errors.append("A valid email is required")
    if not password or len(password) < 6:
        errors.append("Password must be at least 6 characters")
    return errors


@auth_bp.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''

    errors = validate_registration(username, email, password)
    if errors:
        return jsonify({"error": "Validation failed", "details": errors}), 400

    try:
        db = current_app.db
        if db.get_user_by_email(email) or db.get_user_by_username(username):
            return jsonify({"error": "Username or email already registered"}), 409

        user = db.create_user(
            username=username,
            email=email,
            password_hash=hash_password(password),
            name=data.get('name'),
            is_admin=False,
        )
        logger.info(f"Registered user {user['id']} ({username})")
        return jsonify({"token": issue_token(user), "user": serialize_user(user)}), 201

    except Exception as e:
        logger.error(f"Registration failed: {e}")
        return jsonify({"error": str(e)}), 500


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = data.get('email')
    password = data.get('password')

    if not email or not password:
        return jsonify({"error": "Email and password required"}), 400

    try:
        user = current_app.db.get_user_by_email(email)

        if not user or not check_password(password, user['password_hash']):
            return jsonify({"error": "Invalid credentials"}), 401

        return jsonify({"token": issue_token(user), "user": serialize_user(user)})

    except Exception as e:
        logger.error(f"Login failed: {e}")
        return jsonify({"error": str(e)}), 500


@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def me():
    try:
        user = current_app.db.get_user_by_id(current_user_id())
        if not user:
            return jsonify({"error": "User not found"}), 404
        return jsonify({"user": serialize_user(user)})
    except Exception as e:
        return jsonify({"error": str(e)}), 500
