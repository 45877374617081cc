import re
import uuid

import pytest

from jni_site import create_app
from jni_site.record_store import RecordNotFound

CSRF_TOKEN_RE = re.compile(r'name="_csrf_token" value="([^"]+)"')
STAFF_PASSWORD = "admin123"


class FakeRecordStore:
    """In-memory stand-in for the Airtable client, keyed by table name."""

    def __init__(self):
        self.tables = {}
        self.calls = []
        self.failures = {}

    def add(self, table, fields, record_id=None, created_time="2026-03-01T00:00:00.000Z"):
        record = {
            "id": record_id or f"rec{uuid.uuid4().hex[:14]}",
            "createdTime": created_time,
            "fields": dict(fields),
        }
        self.tables.setdefault(table, []).append(record)
        return record

    def records(self, table):
        return self.tables.get(table, [])

    def _check(self, operation, **details):
        self.calls.append((operation, details))
        error = self.failures.get(operation)
        if error:
            raise error

    def _find(self, table, record_id):
        for record in self.records(table):
            if record["id"] == record_id:
                return record
        raise RecordNotFound(f"Airtable record not found ({record_id})")

    def list_records(self, table, max_records=None, fields_by_id=False, filter_formula=None, sort=None):
        self._check("list", table=table, fields_by_id=fields_by_id, filter_formula=filter_formula, sort=sort)
        records = [dict(record) for record in self.records(table)]
        return records[:max_records] if max_records else records

    def get_record(self, table, record_id, fields_by_id=False):
        self._check("get", table=table, record_id=record_id)
        return dict(self._find(table, record_id))

    def create_record(self, table, fields, typecast=True):
        self._check("create", table=table, fields=dict(fields), typecast=typecast)
        return self.add(table, fields)

    def update_record(self, table, record_id, fields, typecast=True):
        self._check("update", table=table, record_id=record_id, fields=dict(fields))
        record = self._find(table, record_id)
        record["fields"].update(fields)
        return record

    def delete_record(self, table, record_id):
        self._check("delete", table=table, record_id=record_id)
        record = self._find(table, record_id)
        self.tables[table].remove(record)
        return {"id": record_id, "deleted": True}

    def calls_for(self, operation):
        return [details for name, details in self.calls if name == operation]


class RecordingEmail:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def send(self, subject, text_body, html_body=None, recipients=None):
        if self.error:
            raise self.error
        self.sent.append({"subject": subject, "text": text_body, "html": html_body})
        return True


class RecordingTelegram:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def send(self, text):
        if self.error:
            raise self.error
        self.sent.append(text)
        return True


def extract_csrf_token(html):
    match = CSRF_TOKEN_RE.search(html or "")
    return match.group(1) if match else None


def build_test_app(store, email=None, telegram=None, overrides=None):
    config = {
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "ADMIN_PASSWORD": STAFF_PASSWORD,
        "AIRTABLE_TOKEN": "pat-test",
        "AIRTABLE_BASE_ID": "appTest",
        "AIRTABLE_LEADS_TABLE": "고객접수",
        "AIRTABLE_LEADS_TABLE_ID": "tblB7XXuo5DjfSYO9",
        "AIRTABLE_BOARD_TABLE_ID": "tbl70mSCu4sicfZa5",
        "AIRTABLE_ANALYTICS_TABLE_ID": "tblsjO3L2mUsbkMNc",
        "LEADS_MAX_RECORDS": 100,
        "BOARD_CACHE_SECONDS": 60,
        "RECORD_STORE_FIELD_MAP": "production",
        "BOARD_FIELD_MAP_JSON": "",
        "INTAKE_REQUIRE_PERSISTENCE": False,
        "EXPOSE_UPSTREAM_ERRORS": False,
        "SENTRY_DSN": "",
        "LOG_JSON": False,
        "APP_BASE_URL": "https://jnipartners.co.kr",
        "HSTS_ENABLED": True,
        "HSTS_MAX_AGE": 31536000,
        "HSTS_INCLUDE_SUBDOMAINS": True,
        "HSTS_PRELOAD": False,
        "TRUST_PROXY_HEADERS": False,
        "SESSION_COOKIE_SECURE": False,
        "REMEMBER_COOKIE_SECURE": False,
    }
    if overrides:
        config.update(overrides)
    return create_app(
        config,
        record_store=store,
        email_dispatcher=email or RecordingEmail(),
        telegram_dispatcher=telegram or RecordingTelegram(),
    )


def fetch_csrf_token(client, path="/consult"):
    token = extract_csrf_token(client.get(path).get_data(as_text=True))
    assert token
    return token


def staff_login(client):
    token = fetch_csrf_token(client)
    response = client.post(
        "/api/admin-auth",
        json={"password": STAFF_PASSWORD},
        headers={"X-CSRF-Token": token},
    )
    assert response.status_code == 200
    return token


@pytest.fixture()
def store():
    return FakeRecordStore()


@pytest.fixture()
def email():
    return RecordingEmail()


@pytest.fixture()
def telegram():
    return RecordingTelegram()


@pytest.fixture()
def app(store, email, telegram):
    return build_test_app(store, email, telegram)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def csrf_token(client):
    return fetch_csrf_token(client)


@pytest.fixture()
def staff_token(client):
    return staff_login(client)
