from urllib.parse import urlparse

from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for
from flask_login import current_user, login_required, login_user, logout_user

try:
    from ..auth import StaffUser, check_staff_password
    from ..dashboard import FILTER_ALL, LEAD_STATUS_TABS, RECENT_LIMIT, overview_cards
    from ..errors import SiteError
    from ..field_maps import BOARD_CATEGORIES
    from ..leads import LEAD_STATUSES
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from auth import StaffUser, check_staff_password
    from dashboard import FILTER_ALL, LEAD_STATUS_TABS, RECENT_LIMIT, overview_cards
    from errors import SiteError
    from field_maps import BOARD_CATEGORIES
    from leads import LEAD_STATUSES

admin_bp = Blueprint('admin', __name__)


def safe_next_path(raw, fallback):
    target = (raw or '').strip()
    if not target:
        return fallback
    parsed = urlparse(target)
    if parsed.scheme or parsed.netloc or not target.startswith('/') or target.startswith('//'):
        return fallback
    return target


@admin_bp.route('/admin-login', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated:
        return redirect(url_for('admin.dashboard'))
    if request.method == 'POST':
        password = request.form.get('password', '')
        if check_staff_password(password):
            csrf_token = session.get('_csrf_token')
            session.clear()
            if csrf_token:
                session['_csrf_token'] = csrf_token
            login_user(StaffUser())
            return redirect(safe_next_path(request.args.get('next'), url_for('admin.dashboard')))
        current_app.logger.warning('Failed staff login attempt.')
        flash('비밀번호가 올바르지 않습니다.', 'danger')
        return render_template('admin/login.html'), 401
    return render_template('admin/login.html')


@admin_bp.route('/admin-logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return redirect(url_for('admin.login'))


@admin_bp.route('/dashboard')
@login_required
def dashboard():
    leads, stats, posts = [], {'total': 0}, []
    load_failed = False
    try:
        leads, stats = current_app.extensions['lead_service'].list_leads()
        posts = current_app.extensions['board_service'].list_posts()
    except SiteError:
        current_app.logger.exception('Dashboard overview fetch failed.')
        load_failed = True
    return render_template(
        'admin/dashboard.html',
        cards=overview_cards(stats, len(posts)),
        recent_leads=leads[:RECENT_LIMIT],
        recent_posts=posts[:RECENT_LIMIT],
        load_failed=load_failed,
    )


@admin_bp.route('/dashboard/leads')
@login_required
def leads():
    return render_template('admin/leads.html', status_tabs=LEAD_STATUS_TABS, statuses=LEAD_STATUSES)


@admin_bp.route('/dashboard/board')
@login_required
def board():
    return render_template('admin/board.html', categories=(FILTER_ALL,) + BOARD_CATEGORIES)


@admin_bp.route('/dashboard/analytics')
@login_required
def analytics():
    return render_template('admin/analytics.html')


@admin_bp.route('/dashboard/settings')
@login_required
def settings():
    return render_template('admin/settings.html')
