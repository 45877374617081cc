import json
import logging
import re
import secrets
from flask import Flask, abort, flash, g, has_request_context, jsonify, redirect, render_template, request, session, url_for
from flask_login import LoginManager
from markupsafe import Markup, escape
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

try:
    from .analytics import AnalyticsService
    from .auth import hash_staff_password, load_staff_user
    from .board import BoardService
    from .config import Config
    from .field_maps import load_field_map
    from .intake import IntakeService
    from .leads import LeadService
    from .notifications import EmailDispatcher, TelegramDispatcher
    from .record_store import RecordStoreClient
except ImportError:  # pragma: no cover - fallback when running from package cwd as script root
    from analytics import AnalyticsService
    from auth import hash_staff_password, load_staff_user
    from board import BoardService
    from config import Config
    from field_maps import load_field_map
    from intake import IntakeService
    from leads import LeadService
    from notifications import EmailDispatcher, TelegramDispatcher
    from record_store import RecordStoreClient

login_manager = LoginManager()
login_manager.login_view = 'admin.login'
login_manager.login_message = None
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,80}$")
_NOINDEX_PREFIXES = ('/dashboard', '/admin-login', '/api/')
_sentry_initialized = False

API_ERROR_MESSAGES = {
    400: '잘못된 요청입니다.',
    401: '로그인이 필요합니다.',
    403: '권한이 없습니다.',
    404: '요청한 항목을 찾을 수 없습니다.',
    405: '허용되지 않는 요청 방식입니다.',
    500: '서버 오류가 발생했습니다.',
}


class JsonLogFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'time': self.formatTime(record, self.datefmt),
        }
        if has_request_context():
            payload.update(
                {
                    'request_id': getattr(g, 'request_id', ''),
                    'method': request.method,
                    'path': request.path,
                    'remote_ip': request.remote_addr,
                }
            )
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(app):
    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))
    if not app.config.get('LOG_JSON', True):
        return
    formatter = JsonLogFormatter()
    for handler in app.logger.handlers:
        handler.setFormatter(formatter)


@login_manager.user_loader
def load_user(user_id):
    return load_staff_user(user_id)


@login_manager.unauthorized_handler
def handle_unauthorized():
    if request.path.startswith('/api/'):
        return jsonify({'success': False, 'error': API_ERROR_MESSAGES[401]}), 401
    return redirect(url_for('admin.login', next=request.path))


def get_csrf_token():
    token = session.get('_csrf_token')
    if not token:
        token = secrets.token_urlsafe(32)
        session['_csrf_token'] = token
    return token


def csrf_input():
    token = get_csrf_token()
    return Markup(f'<input type="hidden" name="_csrf_token" value="{escape(token)}">')  # nosec B704


def get_csp_nonce():
    nonce = getattr(g, 'csp_nonce', '')
    if nonce:
        return nonce
    nonce = secrets.token_urlsafe(16)
    g.csp_nonce = nonce
    return nonce


def init_sentry(app):
    global _sentry_initialized
    if _sentry_initialized:
        return

    dsn = (app.config.get('SENTRY_DSN') or '').strip()
    if not dsn:
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        traces_sample_rate = float(app.config.get('SENTRY_TRACES_SAMPLE_RATE') or 0.0)
        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=traces_sample_rate,
            environment=(app.config.get('SENTRY_ENVIRONMENT') or None),
        )
        _sentry_initialized = True
        app.logger.info('Sentry monitoring enabled.')
    except Exception:
        app.logger.exception('Failed to initialize Sentry monitoring.')


def record_store_table_url(config):
    base = config.get('RECORD_STORE_WEB_URL') or 'https://airtable.com'
    return f"{base}/{config.get('AIRTABLE_BASE_ID')}/{config.get('AIRTABLE_LEADS_TABLE_ID')}"


def init_services(app, record_store=None, email_dispatcher=None, telegram_dispatcher=None):
    """Build the service graph once from ``app.config`` and park it on ``app.extensions``."""
    config = app.config
    store = record_store or RecordStoreClient.from_config(config, logger=app.logger)
    email_dispatcher = email_dispatcher or EmailDispatcher.from_config(config, logger=app.logger)
    telegram_dispatcher = telegram_dispatcher or TelegramDispatcher.from_config(config, logger=app.logger)
    field_map = load_field_map(config.get('RECORD_STORE_FIELD_MAP'), config.get('BOARD_FIELD_MAP_JSON'))
    lead_service = LeadService.from_config(store, config, logger=app.logger)

    def render_lead_email(lead, received_at):
        return render_template('email/lead_notification.html', lead=lead, received_at=received_at)

    app.extensions['record_store'] = store
    app.extensions['email_dispatcher'] = email_dispatcher
    app.extensions['telegram_dispatcher'] = telegram_dispatcher
    app.extensions['board_field_map'] = field_map
    app.extensions['lead_service'] = lead_service
    app.extensions['board_service'] = BoardService.from_config(store, field_map, config, logger=app.logger)
    app.extensions['analytics_service'] = AnalyticsService(
        store,
        table=config.get('AIRTABLE_ANALYTICS_TABLE_ID'),
        timezone=config.get('BUSINESS_TIMEZONE'),
    )
    app.extensions['intake_service'] = IntakeService(
        lead_service,
        email_dispatcher,
        telegram_dispatcher,
        timezone=config.get('BUSINESS_TIMEZONE'),
        record_store_url=record_store_table_url(config),
        require_persistence=bool(config.get('INTAKE_REQUIRE_PERSISTENCE')),
        html_renderer=render_lead_email,
        logger=app.logger,
    )
    app.extensions['staff_password_hash'] = hash_staff_password(config.get('ADMIN_PASSWORD'))


def create_app(config_overrides=None, record_store=None, email_dispatcher=None, telegram_dispatcher=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    configure_logging(app)

    if not app.config.get('SECRET_KEY'):
        import warnings
        app.config['SECRET_KEY'] = secrets.token_urlsafe(32)
        warnings.warn(
            'SECRET_KEY is not set; using a random key. '
            'Sessions will not survive restarts. '
            'Set the SECRET_KEY environment variable for production.',
            stacklevel=2,
        )

    if app.config.get('TRUST_PROXY_HEADERS'):
        # Only trust one proxy hop (the platform edge) when explicitly enabled.
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    init_sentry(app)
    login_manager.init_app(app)
    init_services(
        app,
        record_store=record_store,
        email_dispatcher=email_dispatcher,
        telegram_dispatcher=telegram_dispatcher,
    )

    @app.before_request
    def assign_request_id():
        incoming = (request.headers.get('X-Request-ID') or '').strip()
        if _REQUEST_ID_RE.match(incoming):
            g.request_id = incoming
        else:
            g.request_id = secrets.token_hex(16)

    @app.before_request
    def enforce_csrf():
        if request.method not in ('POST', 'PUT', 'PATCH', 'DELETE'):
            return
        expected = session.get('_csrf_token')
        provided = request.form.get('_csrf_token') or request.headers.get('X-CSRF-Token')
        if not expected or not provided or not secrets.compare_digest(expected, provided):
            abort(400, description='Invalid or missing CSRF token.')

    @app.before_request
    def ensure_csp_nonce():
        get_csp_nonce()

    @app.context_processor
    def inject_globals():
        return dict(
            csrf_token=get_csrf_token,
            csrf_input=csrf_input,
            csp_nonce=get_csp_nonce(),
            site_name='제이앤아이 파트너스',
            site_phone='1533-9018',
        )

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Request-ID'] = getattr(g, 'request_id', '')
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('X-Frame-Options', 'DENY')
        response.headers.setdefault('Referrer-Policy', 'strict-origin-when-cross-origin')
        response.headers.setdefault('Permissions-Policy', 'geolocation=(), microphone=(), camera=()')
        response.headers.setdefault('Cross-Origin-Opener-Policy', 'same-origin')
        if request.is_secure and app.config.get('HSTS_ENABLED', True):
            hsts_max_age = max(0, int(app.config.get('HSTS_MAX_AGE', 31536000)))
            hsts_parts = [f'max-age={hsts_max_age}']
            if app.config.get('HSTS_INCLUDE_SUBDOMAINS', True):
                hsts_parts.append('includeSubDomains')
            if app.config.get('HSTS_PRELOAD', False):
                hsts_parts.append('preload')
            response.headers.setdefault('Strict-Transport-Security', '; '.join(hsts_parts))
        if request.path.startswith(_NOINDEX_PREFIXES):
            response.headers.setdefault('X-Robots-Tag', 'noindex, nofollow, noarchive')

        if request.path.startswith('/static/') and response.status_code in (200, 304):
            response.headers['Cache-Control'] = 'public, max-age=604800'

        if response.content_type and response.content_type.startswith('text/html'):
            nonce = get_csp_nonce()
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
            csp_parts = [
                "default-src 'self'",
                "base-uri 'self'",
                "frame-ancestors 'none'",
                "form-action 'self'",
                "object-src 'none'",
                "img-src 'self' data: https:",
                f"script-src 'self' 'nonce-{nonce}'",
                f"style-src 'self' 'nonce-{nonce}'",
                "connect-src 'self'",
            ]
            if request.is_secure:
                csp_parts.append('upgrade-insecure-requests')
            response.headers['Content-Security-Policy'] = "; ".join(csp_parts)
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        if request.path.startswith('/api/'):
            description = str(getattr(error, 'description', '') or '')
            message = API_ERROR_MESSAGES.get(error.code, API_ERROR_MESSAGES[500])
            if 'CSRF' in description:
                message = '보안 토큰이 만료되었습니다. 페이지를 새로고침 후 다시 시도해주세요.'
            return jsonify({'success': False, 'error': message}), error.code
        if error.code == 400 and 'CSRF' in str(getattr(error, 'description', '') or ''):
            flash('세션이 만료되었습니다. 다시 시도해주세요.', 'danger')
            return redirect(url_for('main.index'))
        if error.code == 404:
            return render_template('errors/404.html'), 404
        return error

    @app.errorhandler(500)
    def handle_server_error(error):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'error': API_ERROR_MESSAGES[500]}), 500
        return render_template('errors/500.html'), 500

    @app.get('/healthz')
    def healthz():
        return {'status': 'ok'}, 200

    @app.get('/readyz')
    def readyz():
        checks = {
            'record_store': bool(app.config.get('AIRTABLE_TOKEN') and app.config.get('AIRTABLE_BASE_ID')),
            'staff_password': bool(app.extensions.get('staff_password_hash')),
            'email': bool(
                app.config.get('GMAIL_REFRESH_TOKEN')
                or (app.config.get('MAILGUN_API_KEY') and app.config.get('MAILGUN_DOMAIN'))
                or app.config.get('SMTP_HOST')
            ),
            'telegram': bool(app.config.get('TELEGRAM_BOT_TOKEN') and app.config.get('TELEGRAM_CHAT_ID')),
        }
        ready = checks['record_store'] and checks['staff_password']
        return {'status': 'ready' if ready else 'degraded', 'checks': checks}, (200 if ready else 503)

    try:
        from .routes.main import main_bp
        from .routes.admin import admin_bp
        from .routes.api import api_bp
    except ImportError:  # pragma: no cover - fallback for script-style execution
        from routes.main import main_bp
        from routes.admin import admin_bp
        from routes.api import api_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(api_bp, url_prefix='/api')

    return app
