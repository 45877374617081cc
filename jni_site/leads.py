import logging

try:
    from .errors import ValidationError
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from errors import ValidationError

STATUS_NEW = '신규'
STATUS_WAITING = '대기'
STATUS_CONSULTING = '상담중'
STATUS_IN_PROGRESS = '진행중'
STATUS_DONE = '완료'
LEAD_STATUSES = (
    STATUS_NEW,
    STATUS_WAITING,
    STATUS_CONSULTING,
    STATUS_IN_PROGRESS,
    STATUS_DONE,
)

# JSON key -> leads table column.
LEAD_FIELDS = {
    'company': '기업명',
    'bizno': '사업자번호',
    'name': '대표자명',
    'phone': '연락처',
    'email': '이메일',
    'industry': '업종',
    'founded': '설립연도',
    'consultTime': '통화가능시간',
    'amount': '자금규모',
    'fundType': '자금종류',
    'message': '문의사항',
    'createdAt': '접수일시',
    'status': '상태',
    'memo': '메모',
}
REQUIRED_LEAD_FIELDS = ('company', 'name', 'phone', 'email', 'consultTime')
OPTIONAL_LEAD_FIELDS = ('bizno', 'industry', 'founded', 'amount', 'fundType', 'message')
MEMO_MAX_LENGTH = 5000


def _as_text(value):
    if value is None:
        return ''
    if isinstance(value, list):
        return ', '.join(str(item) for item in value if item is not None)
    if isinstance(value, dict):
        return str(value.get('name') or '')
    return str(value)


def lead_from_record(record):
    """Flatten a leads-table record into the outward JSON shape."""
    fields = record.get('fields') or {}
    lead = {'id': record.get('id')}
    for key, column in LEAD_FIELDS.items():
        lead[key] = _as_text(fields.get(column))
    lead['status'] = lead['status'] or STATUS_NEW
    if not lead['createdAt']:
        lead['createdAt'] = record.get('createdTime') or ''
    return lead


def status_counts(leads):
    counts = {status: 0 for status in LEAD_STATUSES}
    for lead in leads:
        status = lead.get('status') or STATUS_NEW
        counts[status] = counts.get(status, 0) + 1
    counts['total'] = len(leads)
    return counts


class LeadService:
    def __init__(self, store, table, max_records=100, logger=None):
        self.store = store
        self.table = table
        self.max_records = max_records
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, store, config, logger=None):
        return cls(
            store,
            table=config.get('AIRTABLE_LEADS_TABLE'),
            max_records=int(config.get('LEADS_MAX_RECORDS') or 100),
            logger=logger,
        )

    def list_leads(self):
        """Return the newest ``max_records`` leads and status counts over the whole table."""
        # The store pages in creation order; read every page before taking the newest.
        records = self.store.list_records(self.table)
        records = sorted(records, key=lambda r: r.get('createdTime') or '', reverse=True)
        leads = [lead_from_record(record) for record in records]
        return leads[:self.max_records], status_counts(leads)

    def create_lead(self, fields):
        return self.store.create_record(self.table, fields)

    def update_lead(self, lead_id, status=None, memo=None):
        lead_id = (lead_id or '').strip() if isinstance(lead_id, str) else ''
        if not lead_id:
            raise ValidationError('리드 ID가 필요합니다.')
        if status is None and memo is None:
            raise ValidationError('변경할 상태 또는 메모가 필요합니다.')

        fields = {}
        if status is not None:
            if status not in LEAD_STATUSES:
                raise ValidationError('허용되지 않는 상태 값입니다.')
            fields[LEAD_FIELDS['status']] = status
        if memo is not None:
            if not isinstance(memo, str):
                raise ValidationError('메모는 문자열이어야 합니다.')
            fields[LEAD_FIELDS['memo']] = memo[:MEMO_MAX_LENGTH]

        self.store.update_record(self.table, lead_id, fields)
        self.logger.info(f'Lead updated (id={lead_id}, fields={sorted(fields)})')
        return fields
