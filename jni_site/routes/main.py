import bleach
from flask import Blueprint, abort, current_app, render_template, url_for
from markupsafe import Markup

try:
    from ..dashboard import FILTER_ALL, filter_posts
    from ..errors import NotFoundError, SiteError
    from ..field_maps import BOARD_CATEGORIES
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from dashboard import FILTER_ALL, filter_posts
    from errors import NotFoundError, SiteError
    from field_maps import BOARD_CATEGORIES

main_bp = Blueprint('main', __name__)

ALLOWED_POST_TAGS = [
    'p', 'br', 'strong', 'em', 'b', 'i', 'u', 'blockquote',
    'ul', 'ol', 'li', 'h2', 'h3', 'h4', 'a', 'img', 'hr', 'span',
]
ALLOWED_POST_ATTRIBUTES = {
    'a': ['href', 'title', 'rel'],
    'img': ['src', 'alt', 'title'],
}
ALLOWED_POST_PROTOCOLS = ['http', 'https', 'mailto', 'tel']

SERVICE_PAGES = (
    ('main.fund', '정책자금', '운전·시설자금과 보증 연계를 설계합니다.'),
    ('main.process', '진행절차', '무료상담부터 사후관리까지의 진행 단계를 안내합니다.'),
    ('main.marketing', '마케팅 지원', '온라인 채널 진단과 홍보 전략을 함께 수립합니다.'),
)
SITEMAP_ENTRIES = (
    ('main.index', 'weekly', '1.0'),
    ('main.company', 'monthly', '0.8'),
    ('main.process', 'monthly', '0.8'),
    ('main.fund', 'weekly', '0.9'),
    ('main.marketing', 'monthly', '0.7'),
    ('main.board', 'weekly', '0.7'),
    ('main.consult_form', 'monthly', '0.7'),
)


def render_post_body(body):
    """Sanitize the rich-text body authored in the record store, keeping line breaks for plain text."""
    text = str(body or '')
    if '<' not in text:
        text = '<br>'.join(bleach.clean(line) for line in text.splitlines())
        return Markup(text)  # nosec B704
    cleaned = bleach.clean(
        text,
        tags=ALLOWED_POST_TAGS,
        attributes=ALLOWED_POST_ATTRIBUTES,
        protocols=ALLOWED_POST_PROTOCOLS,
        strip=True,
    )
    return Markup(cleaned)  # nosec B704


def absolute_public_url(path):
    base = (current_app.config.get('APP_BASE_URL') or '').rstrip('/')
    return f'{base}{path}'


def _public_posts():
    try:
        return current_app.extensions['board_service'].list_posts(public_only=True)
    except SiteError:
        current_app.logger.exception('Failed to load board posts for public page.')
        return None


@main_bp.route('/')
def index():
    posts = _public_posts()
    return render_template(
        'index.html',
        services=SERVICE_PAGES,
        latest_posts=(posts or [])[:3],
    )


@main_bp.route('/company')
def company():
    return render_template('company.html')


@main_bp.route('/fund')
def fund():
    return render_template('fund.html')


@main_bp.route('/process')
def process():
    return render_template('process.html')


@main_bp.route('/mkt')
def marketing():
    return render_template('marketing.html')


@main_bp.route('/consult')
def consult_form():
    return render_template('consult.html')


@main_bp.route('/board')
@main_bp.route('/board/category/<category>')
def board(category=FILTER_ALL):
    if category != FILTER_ALL and category not in BOARD_CATEGORIES:
        abort(404)
    posts = _public_posts()
    return render_template(
        'board.html',
        posts=filter_posts(posts or [], category),
        load_failed=posts is None,
        categories=(FILTER_ALL,) + BOARD_CATEGORIES,
        active_category=category,
    )


@main_bp.route('/board/<post_id>')
def board_post(post_id):
    try:
        post = current_app.extensions['board_service'].get_post(post_id)
    except NotFoundError:
        abort(404)
    if not post['isPublic']:
        abort(404)
    return render_template('board_post.html', post=post, body_html=render_post_body(post.get('body')))


@main_bp.route('/sitemap.xml')
def sitemap_xml():
    entries = []
    for endpoint, changefreq, priority in SITEMAP_ENTRIES:
        loc = absolute_public_url(url_for(endpoint))
        entries.append(
            f'  <url><loc>{loc}</loc><changefreq>{changefreq}</changefreq><priority>{priority}</priority></url>'
        )
    xml_body = '\n'.join([
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        *entries,
        '</urlset>',
    ])
    response = current_app.response_class(xml_body, mimetype='application/xml')
    response.headers['Cache-Control'] = 'public, max-age=3600'
    return response


@main_bp.route('/robots.txt')
def robots_txt():
    sitemap_url = absolute_public_url(url_for('main.sitemap_xml'))
    body = '\n'.join([
        'User-agent: *',
        'Allow: /',
        'Disallow: /dashboard',
        'Disallow: /admin-login',
        'Disallow: /api/',
        '',
        f'Sitemap: {sitemap_url}',
        '',
    ])
    response = current_app.response_class(body, mimetype='text/plain')
    response.headers['Cache-Control'] = 'public, max-age=3600'
    return response
