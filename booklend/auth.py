import functools
import logging
import re

import bcrypt
from flask import current_app, g, session

from .domain import User
from .errors import Conflict, Forbidden, Unauthenticated, ValidationError

logger = logging.getLogger(__name__)

REGISTRATION_PATTERN = re.compile(r'(\d{4})-([A-Z]+)-(\d+)', re.IGNORECASE)

DEPARTMENTS = {
    'cs': 'Computer Science',
    'ee': 'Electrical Engineering',
    'me': 'Mechanical Engineering',
    'ce': 'Civil Engineering',
    'ch': 'Chemical Engineering',
    'ms': 'Management Sciences',
    'math': 'Mathematics',
    'phy': 'Physics',
    'chem': 'Chemistry',
}


def extract_registration_number(email):
    match = REGISTRATION_PATTERN.search(email or '')
    return match.group(0) if match else None


def extract_department(email):
    match = REGISTRATION_PATTERN.search(email or '')
    if not match:
        return 'Unknown'
    return DEPARTMENTS.get(match.group(2).lower(), 'Unknown')


def is_allowed_email(email, domains):
    _, sep, domain = (email or '').strip().lower().rpartition('@')
    return bool(sep) and domain in domains


def hash_password(password):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def check_password(password, password_hash):
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))


def _require_strings(*values):
    if not all(isinstance(value, str) for value in values):
        raise ValidationError('Fields must be strings')


def register_user(gateway, name, email, password, allowed_domains, now):
    if not name or not email or not password:
        raise ValidationError('Missing required fields')
    _require_strings(name, email, password)
    if not name.strip():
        raise ValidationError('Missing required fields')
    email = email.strip()
    if not is_allowed_email(email, allowed_domains):
        logger.debug(f"Registration rejected for outside domain: {email}")
        raise Forbidden('Only campus students and staff are allowed')
    if gateway.find_user_by_email(email):
        raise Conflict('Email already exists')
    try:
        user = gateway.add_user(User(
            email=email,
            display_name=name.strip(),
            password_hash=hash_password(password),
            registration_number=extract_registration_number(email),
            department=extract_department(email),
            created_at=now,
            last_login=now,
        ))
    except ValueError:
        raise Conflict('Email already exists')
    logger.debug(f"User registered: {email}")
    return user


def authenticate(gateway, email, password, now):
    if not email or not password:
        raise ValidationError('Missing email or password')
    _require_strings(email, password)
    user = gateway.find_user_by_email(email.strip())
    if user is None or not check_password(password, user.password_hash):
        logger.debug(f"Invalid credentials for: {email}")
        raise Unauthenticated('Invalid credentials')
    return gateway.update_user(user.id, last_login=now) or user


def current_principal():
    """Resolve the session's user, or ``None`` when nobody is logged in."""
    if 'principal' in g:
        return g.principal
    user = None
    user_id = session.get('user_id')
    if user_id is not None:
        user = current_app.extensions['booklend'].gateway.get_user(user_id)
        if user is None:
            logger.error(f"Session refers to unknown user_id={user_id}")
    g.principal = user
    return user


# Authentication decorator
def login_required(f):
    @functools.wraps(f)
    def wrapped(*args, **kwargs):
        if current_principal() is None:
            logger.error("Unauthorized access: No user session")
            raise Unauthenticated('Unauthorized access')
        return f(*args, **kwargs)
    return wrapped
