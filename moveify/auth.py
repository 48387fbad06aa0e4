"""
Bearer-token identity and ownership checks.

Tokens are issued elsewhere (login is handled by the accounts service);
issue_token exists for that service and for tests.
"""

from datetime import datetime, timedelta
from functools import wraps

import jwt
from flask import current_app, jsonify, request

from moveify.errors import Forbidden
from moveify.models import db, User


def issue_token(user, ttl_days=None):
    ttl_days = ttl_days or current_app.config.get('TOKEN_TTL_DAYS', 30)
    return jwt.encode({
        'user_id': user.id,
        'role': user.role,
        'exp': datetime.utcnow() + timedelta(days=ttl_days)
    }, current_app.config['SECRET_KEY'], algorithm='HS256')


def token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = request.headers.get('Authorization', '').replace('Bearer ', '')
        if not token:
            return jsonify({'error': 'Token missing'}), 401
        try:
            data = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=['HS256'])
        except jwt.ExpiredSignatureError:
            return jsonify({'error': 'Token expired'}), 401
        except jwt.InvalidTokenError:
            return jsonify({'error': 'Invalid token'}), 401

        current_user = db.session.get(User, data.get('user_id'))
        if not current_user:
            return jsonify({'error': 'User not found'}), 401
        return f(current_user, *args, **kwargs)
    return decorated


def clinician_required(f):
    """Use under @token_required"""
    @wraps(f)
    def decorated(current_user, *args, **kwargs):
        if not current_user.is_clinician:
            raise Forbidden('Clinician access required')
        return f(current_user, *args, **kwargs)
    return decorated


def can_access_patient(user, patient_id) -> bool:
    """Clinicians see every patient, patients only themselves"""
    return user.is_clinician or user.id == patient_id


def require_patient_access(user, patient_id):
    if not can_access_patient(user, patient_id):
        raise Forbidden('Not allowed to access this patient')
