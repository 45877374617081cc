"""JSON endpoints. Every handler answers with the ``{success, ...}`` envelope."""
from flask import Blueprint, current_app, jsonify, request, session
from flask_login import current_user, login_required, login_user, logout_user

try:
    from ..analytics import parse_days
    from ..auth import StaffUser, check_staff_password
    from ..errors import NotFoundError, SiteError, UpstreamError, ValidationError
    from ..utils import get_request_ip
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from analytics import parse_days
    from auth import StaffUser, check_staff_password
    from errors import NotFoundError, SiteError, UpstreamError, ValidationError
    from utils import get_request_ip

api_bp = Blueprint('api', __name__)

LEAD_NOT_FOUND_MESSAGE = '접수 건을 찾을 수 없습니다.'
POST_NOT_FOUND_MESSAGE = '게시글을 찾을 수 없습니다.'


def _service(name):
    return current_app.extensions[name]


def _failure(error, context, not_found_message=None):
    """Turn an exception caught at the request boundary into a JSON error envelope."""
    if isinstance(error, NotFoundError):
        return jsonify({'success': False, 'error': not_found_message or str(error)}), 404
    if isinstance(error, UpstreamError):
        current_app.logger.exception(f'{context} failed: {error}')
        message = str(error) if current_app.config.get('EXPOSE_UPSTREAM_ERRORS') else UpstreamError.public_message
        return jsonify({'success': False, 'error': message}), error.status_code
    if isinstance(error, SiteError):
        return jsonify({'success': False, 'error': str(error)}), error.status_code
    current_app.logger.exception(f'{context} failed.')
    return jsonify({'success': False, 'error': SiteError.public_message}), 500


def _request_payload():
    payload = request.get_json(silent=True)
    if payload is not None:
        return payload
    form = request.form.to_dict(flat=False)
    form.pop('_csrf_token', None)
    return {key: values[0] if len(values) == 1 else values for key, values in form.items()}


@api_bp.route('/consult', methods=['POST'])
def consult():
    try:
        _service('intake_service').submit(_request_payload())
    except ValidationError as e:
        current_app.logger.info(f'Consult submission rejected (ip={get_request_ip()}): {e}')
        return jsonify({'success': False, 'error': str(e)}), 400
    except UpstreamError as e:
        current_app.logger.error(f'Consult intake rejected: {e}')
        return jsonify({'success': False, 'error': str(e)}), 502
    except Exception as e:
        return _failure(e, 'Consult API')
    return jsonify({'success': True})


@api_bp.route('/leads', methods=['GET'])
@login_required
def leads_list():
    try:
        leads, stats = _service('lead_service').list_leads()
    except Exception as e:
        return _failure(e, 'Leads list')
    response = jsonify({'success': True, 'leads': leads, 'stats': stats})
    response.headers['Cache-Control'] = 'private, no-store'
    return response


@api_bp.route('/leads', methods=['PATCH'])
@login_required
def leads_update():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'success': False, 'error': '잘못된 요청입니다.'}), 400
    try:
        _service('lead_service').update_lead(
            payload.get('id'),
            status=payload.get('status'),
            memo=payload.get('memo'),
        )
    except Exception as e:
        return _failure(e, 'Lead update', not_found_message=LEAD_NOT_FOUND_MESSAGE)
    return jsonify({'success': True})


@api_bp.route('/board', methods=['GET'])
def board_get():
    staff = current_user.is_authenticated
    post_id = (request.args.get('id') or '').strip()
    board = _service('board_service')
    try:
        if post_id:
            post = board.get_post(post_id)
            if not staff and not post['isPublic']:
                raise NotFoundError(POST_NOT_FOUND_MESSAGE)
            response = jsonify({'success': True, 'post': post})
        else:
            response = jsonify({'success': True, 'posts': board.list_posts(public_only=not staff)})
    except Exception as e:
        return _failure(e, 'Board API', not_found_message=POST_NOT_FOUND_MESSAGE)

    if staff:
        response.headers['Cache-Control'] = 'private, no-store'
    else:
        max_age = int(current_app.config.get('BOARD_CACHE_SECONDS', 60))
        response.headers['Cache-Control'] = f'public, max-age={max_age}'
    response.vary.add('Cookie')
    return response


@api_bp.route('/board', methods=['DELETE'])
@login_required
def board_delete():
    try:
        _service('board_service').delete_post(request.args.get('id'))
    except Exception as e:
        return _failure(e, 'Board delete', not_found_message=POST_NOT_FOUND_MESSAGE)
    return jsonify({'success': True})


@api_bp.route('/analytics', methods=['GET'])
@login_required
def analytics():
    days = parse_days(request.args.get('days'))
    try:
        rows, summary = _service('analytics_service').report(days)
    except Exception as e:
        return _failure(e, 'Analytics API')
    return jsonify({'success': True, 'days': days, 'data': rows, 'summary': summary})


@api_bp.route('/admin-auth', methods=['POST'])
def admin_auth():
    payload = request.get_json(silent=True) or {}
    password = payload.get('password') if isinstance(payload, dict) else None
    if not isinstance(password, str) or not check_staff_password(password):
        current_app.logger.warning('Staff password check failed.')
        return jsonify({'success': False, 'error': '비밀번호가 올바르지 않습니다.'}), 401
    csrf_token = session.get('_csrf_token')
    session.clear()
    if csrf_token:
        session['_csrf_token'] = csrf_token
    login_user(StaffUser())
    return jsonify({'success': True})


@api_bp.route('/admin-logout', methods=['POST'])
def admin_logout():
    logout_user()
    return jsonify({'success': True})
