"""Visit statistics kept in the record store's analytics table (one row per day)."""

try:
    from .utils import business_date
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from utils import business_date

DEFAULT_DAYS = 30
MAX_DAYS = 365

COLUMN_DATE = '날짜'
COLUMN_VISITORS = '방문자수'
COLUMN_PAGEVIEWS = '페이지뷰'
COLUMN_DURATION = '평균체류시간'
COLUMN_BOUNCE_RATE = '이탈률'


def parse_days(raw, default=DEFAULT_DAYS):
    try:
        days = int(raw)
    except (TypeError, ValueError):
        return default
    return max(1, min(MAX_DAYS, days))


def _number(value):
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def row_from_record(record):
    fields = record.get('fields') or {}
    return {
        'id': record.get('id'),
        'date': str(fields.get(COLUMN_DATE) or ''),
        'visitors': _number(fields.get(COLUMN_VISITORS)),
        'pageviews': _number(fields.get(COLUMN_PAGEVIEWS)),
        'avgDuration': _number(fields.get(COLUMN_DURATION)),
        'bounceRate': _number(fields.get(COLUMN_BOUNCE_RATE)),
    }


def summarize(rows):
    if not rows:
        return {'totalVisitors': 0, 'totalPageviews': 0, 'avgDuration': 0, 'avgBounceRate': 0}
    count = len(rows)
    return {
        'totalVisitors': sum(row['visitors'] for row in rows),
        'totalPageviews': sum(row['pageviews'] for row in rows),
        'avgDuration': round(sum(row['avgDuration'] for row in rows) / count),
        'avgBounceRate': round(sum(row['bounceRate'] for row in rows) / count, 2),
    }


class AnalyticsService:
    def __init__(self, store, table, timezone='Asia/Seoul'):
        self.store = store
        self.table = table
        self.timezone = timezone

    def report(self, days=DEFAULT_DAYS, now=None):
        start_date = business_date(days, self.timezone, now)
        records = self.store.list_records(
            self.table,
            filter_formula=f"{{{COLUMN_DATE}}} >= '{start_date}'",
            sort=[(COLUMN_DATE, 'desc')],
        )
        rows = [row_from_record(record) for record in records]
        return rows, summarize(rows)
