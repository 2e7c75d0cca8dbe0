# salesflow/auth/routes.py
"""Email/password accounts for sales representatives.

The signed-in user id lives in Flask's session cookie.  Every user gets a
profile on first sign-in; sessions are owned by profiles.
"""

import functools
import logging

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy.exc import IntegrityError

from salesflow import db
from salesflow.errors import NotFound, Unauthorized, ValidationFailed
from salesflow.models import Profile, User

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)

DEV_EMAIL = 'dev@salesflow.local'


def get_current_user():
    user_id = session.get('user_id')
    return db.session.get(User, user_id) if user_id else None


def get_or_create_profile(user):
    profile = Profile.query.filter_by(user_id=user.id).first()
    if profile is None:
        profile = Profile(user_id=user.id, full_name=user.full_name or user.email.split('@')[0])
        db.session.add(profile)
        db.session.commit()
    return profile


def login_required(view):
    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        user = get_current_user()
        if user is None:
            raise Unauthorized('Sign in required')
        g.user = user
        g.profile = get_or_create_profile(user)
        return view(*args, **kwargs)
    return wrapped


def _me(user):
    profile = get_or_create_profile(user)
    return {
        'id': user.id,
        'email': user.email,
        'full_name': user.full_name,
        'profile_id': profile.id,
    }


@bp.route('/sign-up', methods=['POST'])
def sign_up():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not email or '@' not in email:
        raise ValidationFailed('A valid email is required')
    if len(password) < 6:
        raise ValidationFailed('Password must be at least 6 characters')

    user = User(email=email, full_name=(data.get('full_name') or '').strip() or None)
    user.set_password(password)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationFailed('An account with that email already exists') from None

    session.clear()
    session['user_id'] = user.id
    logger.info("new account %s", email)
    return jsonify(_me(user)), 201


@bp.route('/sign-in', methods=['POST'])
def sign_in():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None or not user.check_password(data.get('password') or ''):
        raise Unauthorized('Invalid email or password')
    session.clear()
    session['user_id'] = user.id
    return jsonify(_me(user))


@bp.route('/sign-out', methods=['POST'])
def sign_out():
    session.clear()
    return jsonify(ok=True)


@bp.route('/me')
@login_required
def me():
    return jsonify(_me(g.user))


@bp.route('/dev-login', methods=['POST'])
def dev_login():
    if not current_app.config.get('DEV_LOGIN_ENABLED'):
        raise NotFound('Dev login is disabled')
    user = User.query.filter_by(email=DEV_EMAIL).first()
    if user is None:
        user = User(email=DEV_EMAIL, full_name='Dev Rep')
        user.set_password(current_app.config['SECRET_KEY'])
        db.session.add(user)
        db.session.commit()
    session.clear()
    session['user_id'] = user.id
    return jsonify(_me(user))
