"""Field-id translation tables for the board table.

Airtable display names are not stable across bases (and non-ASCII names are
mangled by some clients), so board records are fetched with
``returnFieldsByFieldId`` and read through one of these maps. Each deployment
environment picks a map by name; ``BOARD_FIELD_MAP_JSON`` can replace
individual entries without a code change.
"""
import json

FIELD_TITLE = 'title'
FIELD_SUMMARY = 'summary'
FIELD_BODY = 'body'
FIELD_CATEGORY = 'category'
FIELD_AMOUNT = 'amount'
FIELD_DATE = 'date'
FIELD_VISIBILITY = 'visibility'
FIELD_THUMBNAIL = 'thumbnail'
BOARD_FIELDS = (
    FIELD_TITLE,
    FIELD_SUMMARY,
    FIELD_BODY,
    FIELD_CATEGORY,
    FIELD_AMOUNT,
    FIELD_DATE,
    FIELD_VISIBILITY,
    FIELD_THUMBNAIL,
)

CATEGORY_SUCCESS_STORY = '성공사례'
CATEGORY_POLICY_FUNDING = '정책자금'
CATEGORY_CERTIFICATION = '인증지원'
BOARD_CATEGORIES = (
    CATEGORY_SUCCESS_STORY,
    CATEGORY_POLICY_FUNDING,
    CATEGORY_CERTIFICATION,
)


class BoardFieldMap:
    def __init__(self, name, version, field_ids, category_names):
        self.name = name
        self.version = version
        self.field_ids = dict(field_ids)
        self.category_names = dict(category_names)

    def field_id(self, field):
        return self.field_ids.get(field)

    def raw_value(self, fields, field):
        field_id = self.field_id(field)
        if not field_id:
            return None
        return (fields or {}).get(field_id)

    def category_name(self, value):
        if value is None or value == '':
            return ''
        if isinstance(value, dict):
            option_id = value.get('id') or ''
            return self.category_names.get(option_id) or value.get('name') or option_id
        text = str(value)
        return self.category_names.get(text, text)

    def resolve(self, fields, field):
        """Return the semantic value of ``field``; missing values come back empty."""
        value = self.raw_value(fields, field)
        if field == FIELD_CATEGORY:
            return self.category_name(value)
        if field == FIELD_VISIBILITY:
            return value is not False
        if field == FIELD_THUMBNAIL:
            return _attachment_url(value)
        if value is None:
            return ''
        return value

    def with_overrides(self, overrides):
        if not overrides:
            return self
        field_ids = dict(self.field_ids)
        category_names = dict(self.category_names)
        for key, value in (overrides.get('fields') or {}).items():
            if key in BOARD_FIELDS and value:
                field_ids[key] = str(value)
        for key, value in (overrides.get('categories') or {}).items():
            if key and value:
                category_names[str(key)] = str(value)
        version = overrides.get('version') or f'{self.version}+override'
        return BoardFieldMap(self.name, version, field_ids, category_names)


def _attachment_url(value):
    if not value:
        return ''
    if isinstance(value, list):
        first = value[0] if value else None
        if isinstance(first, dict):
            return first.get('url') or ''
        return str(first or '')
    if isinstance(value, dict):
        return value.get('url') or ''
    return str(value)


PRODUCTION_FIELD_MAP = BoardFieldMap(
    name='production',
    version='2025-01',
    field_ids={
        FIELD_TITLE: 'fldZ7fwbfxuSB8h1e',
        FIELD_SUMMARY: 'fldFM2SrXA57YVpDh',
        FIELD_BODY: 'fldizthhl55jka0iX',
        FIELD_CATEGORY: 'fldONH3XMUJsVB8UO',
        FIELD_AMOUNT: 'fldzGiDfPJcb2qmnF',
        FIELD_DATE: 'fldiiS0vSWHqMVTNw',
        FIELD_VISIBILITY: 'fldM7DjMJMKLrCnV8',
        FIELD_THUMBNAIL: 'fldTdp4fSsnGkSl68',
    },
    category_names={
        'selM4ZDRvm8PMBpBV': CATEGORY_SUCCESS_STORY,
        'selvmPChs5uR3tLAQ': CATEGORY_POLICY_FUNDING,
        'selfHlxsrswu3QAzO': CATEGORY_CERTIFICATION,
    },
)

# Preview deployments read the same base as production until a copy is made.
FIELD_MAPS = {
    'production': PRODUCTION_FIELD_MAP,
    'preview': PRODUCTION_FIELD_MAP,
    'development': PRODUCTION_FIELD_MAP,
}


def load_field_map(name, overrides_json=''):
    key = (name or 'production').strip().lower()
    if key not in FIELD_MAPS:
        raise ValueError(f'Unknown board field map: {name!r}')
    field_map = FIELD_MAPS[key]
    if overrides_json:
        overrides = json.loads(overrides_json)
        if not isinstance(overrides, dict):
            raise ValueError('BOARD_FIELD_MAP_JSON must be a JSON object')
        field_map = field_map.with_overrides(overrides)
    return field_map
