from flask import current_app
from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

STAFF_USER_ID = 'staff'
AUTH_DUMMY_HASH = generate_password_hash('JNIPartners::dummy-auth-check')


class StaffUser(UserMixin):
    """The single back-office account; its password comes from ``ADMIN_PASSWORD``."""

    def __init__(self, user_id=STAFF_USER_ID):
        self.id = user_id
        self.username = 'admin'


def hash_staff_password(password):
    return generate_password_hash(password) if password else ''


def check_staff_password(password):
    password_hash = current_app.extensions.get('staff_password_hash') or ''
    if not password_hash:
        # Keep response timing closer when no password is configured.
        check_password_hash(AUTH_DUMMY_HASH, password or '')
        current_app.logger.error('ADMIN_PASSWORD is not configured; staff login is disabled.')
        return False
    return check_password_hash(password_hash, password or '')


def load_staff_user(user_id):
    if user_id != STAFF_USER_ID:
        return None
    if not current_app.extensions.get('staff_password_hash'):
        return None
    return StaffUser(user_id)
