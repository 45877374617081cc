"""Thin client for the Airtable REST API that holds leads, board posts and analytics rows.

Every call is attempted exactly once. Failures surface as ``RecordNotFound``
when the store reports the record as absent and ``RecordStoreError`` for
anything else, so callers can tell "doesn't exist" from "transient failure".
"""
import json
import logging
import urllib.error
import urllib.parse
import urllib.request

try:
    from .errors import ConfigurationError, NotFoundError, UpstreamError
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from errors import ConfigurationError, NotFoundError, UpstreamError

NOT_FOUND_ERROR_TYPES = {'NOT_FOUND', 'MODEL_ID_NOT_FOUND', 'ROW_DOES_NOT_EXIST'}
MAX_PAGE_SIZE = 100


class RecordNotFound(NotFoundError):
    pass


class RecordStoreError(UpstreamError):
    pass


def _error_type(body):
    try:
        payload = json.loads(body or '{}')
    except (TypeError, ValueError):
        return ''
    error = payload.get('error') if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get('type') or '')
    if isinstance(error, str):
        return error
    return ''


class RecordStoreClient:
    def __init__(self, api_url, base_id, token, timeout=10.0, logger=None):
        self.api_url = (api_url or '').rstrip('/')
        self.base_id = base_id
        self.token = token
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, logger=None):
        return cls(
            api_url=config.get('RECORD_STORE_API_URL'),
            base_id=config.get('AIRTABLE_BASE_ID'),
            token=config.get('AIRTABLE_TOKEN'),
            timeout=float(config.get('RECORD_STORE_TIMEOUT_SECONDS') or 10.0),
            logger=logger,
        )

    @property
    def is_configured(self):
        return bool(self.token and self.base_id)

    def _url(self, table, record_id=None, params=None):
        path = f"{self.api_url}/{urllib.parse.quote(self.base_id or '', safe='')}/{urllib.parse.quote(table or '', safe='')}"
        if record_id is not None:
            path = f"{path}/{urllib.parse.quote(record_id, safe='')}"
        if params:
            path = f"{path}?{urllib.parse.urlencode(params)}"
        return path

    def _request(self, method, url, payload=None):
        if not self.token:
            raise ConfigurationError('AIRTABLE_TOKEN not configured')
        if not self.base_id:
            raise ConfigurationError('AIRTABLE_BASE_ID not configured')

        data = None
        req = urllib.request.Request(url, method=method)
        req.add_header('Authorization', f'Bearer {self.token}')
        if payload is not None:
            data = json.dumps(payload, ensure_ascii=False).encode('utf-8')
            req.add_header('Content-Type', 'application/json')

        try:
            with urllib.request.urlopen(req, data=data, timeout=self.timeout) as resp:  # nosec B310
                body = resp.read().decode('utf-8')
        except urllib.error.HTTPError as e:
            error_body = e.read().decode('utf-8', errors='replace')
            if e.code == 404 or _error_type(error_body) in NOT_FOUND_ERROR_TYPES:
                raise RecordNotFound(f'Airtable record not found ({e.code})') from e
            self.logger.error(f'Airtable API error {e.code} on {method} {url}: {error_body[:500]}')
            raise RecordStoreError(f'Airtable Error: {e.code}') from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise RecordStoreError(f'Airtable request failed: {e}') from e

        try:
            return json.loads(body) if body else {}
        except ValueError as e:
            raise RecordStoreError('Airtable returned a malformed response') from e

    def list_records(self, table, max_records=None, fields_by_id=False, filter_formula=None, sort=None):
        """Return every record in ``table``, following pagination offsets up to ``max_records``."""
        base_params = []
        if max_records:
            base_params.append(('maxRecords', str(int(max_records))))
        base_params.append(('pageSize', str(min(MAX_PAGE_SIZE, int(max_records or MAX_PAGE_SIZE)))))
        if fields_by_id:
            base_params.append(('returnFieldsByFieldId', 'true'))
        if filter_formula:
            base_params.append(('filterByFormula', filter_formula))
        for index, (field, direction) in enumerate(sort or []):
            base_params.append((f'sort[{index}][field]', field))
            base_params.append((f'sort[{index}][direction]', direction))

        records = []
        offset = None
        while True:
            params = list(base_params)
            if offset:
                params.append(('offset', offset))
            payload = self._request('GET', self._url(table, params=params))
            records.extend(payload.get('records') or [])
            offset = payload.get('offset')
            if not offset or (max_records and len(records) >= max_records):
                break
        if max_records:
            records = records[:max_records]
        return records

    def get_record(self, table, record_id, fields_by_id=False):
        params = {'returnFieldsByFieldId': 'true'} if fields_by_id else None
        return self._request('GET', self._url(table, record_id, params))

    def create_record(self, table, fields, typecast=True):
        return self._request('POST', self._url(table), {'fields': fields, 'typecast': bool(typecast)})

    def update_record(self, table, record_id, fields, typecast=True):
        # PATCH leaves every field that is not named in ``fields`` untouched.
        return self._request('PATCH', self._url(table, record_id), {'fields': fields, 'typecast': bool(typecast)})

    def delete_record(self, table, record_id):
        return self._request('DELETE', self._url(table, record_id))
