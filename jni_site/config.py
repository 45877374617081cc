import os

basedir = os.path.abspath(os.path.dirname(__file__))


def _is_vercel_runtime():
    return bool(os.environ.get('VERCEL') or os.environ.get('VERCEL_ENV'))


def _is_production_runtime():
    flask_env = (os.environ.get('FLASK_ENV') or '').strip().lower()
    vercel_env = (os.environ.get('VERCEL_ENV') or '').strip().lower()
    return flask_env == 'production' or vercel_env == 'production'


def _as_bool(value, default=False):
    if value is None:
        return default
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _as_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value, default):
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _field_map_name():
    explicit = (os.environ.get('RECORD_STORE_FIELD_MAP') or '').strip().lower()
    if explicit:
        return explicit
    vercel_env = (os.environ.get('VERCEL_ENV') or '').strip().lower()
    if vercel_env in {'preview', 'development'}:
        return vercel_env
    return 'production'


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or ''
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD') or ''
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = _as_bool(
        os.environ.get('SESSION_COOKIE_SECURE'),
        ((os.environ.get('PREFERRED_URL_SCHEME') or '').lower() == 'https') or _is_production_runtime(),
    )
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = 'Lax'
    REMEMBER_COOKIE_SECURE = SESSION_COOKIE_SECURE
    TRUST_PROXY_HEADERS = _as_bool(os.environ.get('TRUST_PROXY_HEADERS'), _is_vercel_runtime())
    PREFERRED_URL_SCHEME = os.environ.get('PREFERRED_URL_SCHEME') or ('https' if SESSION_COOKIE_SECURE else 'http')
    APP_BASE_URL = (os.environ.get('APP_BASE_URL') or 'https://jnipartners.co.kr').rstrip('/')
    HSTS_ENABLED = _as_bool(os.environ.get('HSTS_ENABLED'), True)
    HSTS_MAX_AGE = _as_int(os.environ.get('HSTS_MAX_AGE'), 31536000)
    HSTS_INCLUDE_SUBDOMAINS = _as_bool(os.environ.get('HSTS_INCLUDE_SUBDOMAINS'), True)
    HSTS_PRELOAD = _as_bool(os.environ.get('HSTS_PRELOAD'), False)
    BUSINESS_TIMEZONE = (os.environ.get('BUSINESS_TIMEZONE') or 'Asia/Seoul').strip()

    # Record store (Airtable)
    AIRTABLE_TOKEN = (os.environ.get('AIRTABLE_TOKEN') or '').strip()
    AIRTABLE_BASE_ID = (os.environ.get('AIRTABLE_BASE_ID') or 'appxU3n3KqoUr3l9e').strip()
    AIRTABLE_LEADS_TABLE = (os.environ.get('AIRTABLE_LEADS_TABLE') or '고객접수').strip()
    AIRTABLE_LEADS_TABLE_ID = (os.environ.get('AIRTABLE_LEADS_TABLE_ID') or 'tblB7XXuo5DjfSYO9').strip()
    AIRTABLE_BOARD_TABLE_ID = (os.environ.get('AIRTABLE_BOARD_TABLE_ID') or 'tbl70mSCu4sicfZa5').strip()
    AIRTABLE_ANALYTICS_TABLE_ID = (os.environ.get('AIRTABLE_ANALYTICS_TABLE_ID') or 'tblsjO3L2mUsbkMNc').strip()
    RECORD_STORE_API_URL = (os.environ.get('RECORD_STORE_API_URL') or 'https://api.airtable.com/v0').rstrip('/')
    RECORD_STORE_WEB_URL = (os.environ.get('RECORD_STORE_WEB_URL') or 'https://airtable.com').rstrip('/')
    RECORD_STORE_TIMEOUT_SECONDS = max(1.0, _as_float(os.environ.get('RECORD_STORE_TIMEOUT_SECONDS'), 10.0))
    RECORD_STORE_FIELD_MAP = _field_map_name()
    BOARD_FIELD_MAP_JSON = (os.environ.get('BOARD_FIELD_MAP_JSON') or '').strip()
    LEADS_MAX_RECORDS = max(1, _as_int(os.environ.get('LEADS_MAX_RECORDS'), 100))
    BOARD_MAX_RECORDS = max(1, _as_int(os.environ.get('BOARD_MAX_RECORDS'), 100))
    BOARD_CACHE_SECONDS = max(0, _as_int(os.environ.get('BOARD_CACHE_SECONDS'), 60))

    # Staff email notifications
    GMAIL_USER = (os.environ.get('GMAIL_USER') or '').strip()
    GMAIL_CLIENT_ID = (os.environ.get('GMAIL_CLIENT_ID') or '').strip()
    GMAIL_CLIENT_SECRET = (os.environ.get('GMAIL_CLIENT_SECRET') or '').strip()
    GMAIL_REFRESH_TOKEN = (os.environ.get('GMAIL_REFRESH_TOKEN') or '').strip()
    MAILGUN_API_KEY = (os.environ.get('MAILGUN_API_KEY') or '').strip()
    MAILGUN_DOMAIN = (os.environ.get('MAILGUN_DOMAIN') or '').strip()
    SMTP_HOST = (os.environ.get('SMTP_HOST') or '').strip()
    SMTP_PORT = _as_int(os.environ.get('SMTP_PORT'), 587)
    SMTP_USERNAME = (os.environ.get('SMTP_USERNAME') or '').strip()
    SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD') or ''
    SMTP_USE_TLS = _as_bool(os.environ.get('SMTP_USE_TLS'), True)
    SMTP_USE_SSL = _as_bool(os.environ.get('SMTP_USE_SSL'), False)
    MAIL_FROM_NAME = (os.environ.get('MAIL_FROM_NAME') or '제이앤아이 파트너스').strip()
    MAIL_FROM = (os.environ.get('MAIL_FROM') or GMAIL_USER or SMTP_USERNAME or 'no-reply@localhost').strip()
    LEAD_NOTIFICATION_EMAILS = os.environ.get('LEAD_NOTIFICATION_EMAILS') or GMAIL_USER

    # Staff chat notifications
    TELEGRAM_BOT_TOKEN = (os.environ.get('TELEGRAM_BOT_TOKEN') or '').strip()
    TELEGRAM_CHAT_ID = (os.environ.get('TELEGRAM_CHAT_ID') or '').strip()
    TELEGRAM_API_URL = (os.environ.get('TELEGRAM_API_URL') or 'https://api.telegram.org').rstrip('/')

    INTAKE_REQUIRE_PERSISTENCE = _as_bool(os.environ.get('INTAKE_REQUIRE_PERSISTENCE'), False)
    EXPOSE_UPSTREAM_ERRORS = _as_bool(os.environ.get('EXPOSE_UPSTREAM_ERRORS'), False)

    SENTRY_DSN = (os.environ.get('SENTRY_DSN') or '').strip()
    SENTRY_ENVIRONMENT = (os.environ.get('SENTRY_ENVIRONMENT') or '').strip()
    SENTRY_TRACES_SAMPLE_RATE = _as_float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE'), 0.0)
    LOG_JSON = _as_bool(os.environ.get('LOG_JSON'), True)
    LOG_LEVEL = (os.environ.get('LOG_LEVEL') or 'INFO').strip().upper()
