import re
from datetime import datetime, timezone

import pytest

from conftest import RecordingEmail, RecordingTelegram, build_test_app, fetch_csrf_token
from jni_site.errors import ConfigurationError, NotificationError, UpstreamError, ValidationError
from jni_site.intake import IntakeService, TASK_EMAIL, TASK_RECORD, TASK_TELEGRAM, parse_consult_payload
from jni_site.leads import LeadService
from jni_site.notifications import build_lead_email_subject, build_telegram_message
from jni_site.record_store import RecordStoreError
from jni_site.utils import business_timestamp, format_korean_timestamp

KOREAN_TIMESTAMP_RE = re.compile(r"^\d{4}\. \d{1,2}\. \d{1,2}\. (오전|오후) \d{1,2}:\d{2}:\d{2}$")


def consult_payload(**overrides):
    payload = {
        "company": "테스트기업",
        "bizno": "123-45-67890",
        "name": "홍길동",
        "phone": "010-1234-5678",
        "email": "ceo@example.com",
        "industry": "제조업",
        "founded": "2019",
        "consultTime": "오전 (09:00~12:00)",
        "amount": "1억~3억",
        "fundType": "운전자금, 시설자금",
        "message": "정책자금 상담 요청드립니다.",
    }
    payload.update(overrides)
    return payload


def post_consult(client, token, payload):
    return client.post("/api/consult", json=payload, headers={"X-CSRF-Token": token})


def test_consult_success_persists_and_notifies(client, csrf_token, store, email, telegram):
    response = post_consult(client, csrf_token, consult_payload())
    assert response.status_code == 200
    assert response.get_json() == {"success": True}

    created = store.calls_for("create")
    assert len(created) == 1
    fields = created[0]["fields"]
    assert created[0]["table"] == "고객접수"
    assert created[0]["typecast"] is True
    assert fields["기업명"] == "테스트기업"
    assert fields["대표자명"] == "홍길동"
    assert fields["통화가능시간"] == "오전 (09:00~12:00)"
    assert fields["자금종류"] == "운전자금, 시설자금"
    assert fields["상태"] == "신규"
    assert KOREAN_TIMESTAMP_RE.match(fields["접수일시"])

    assert len(email.sent) == 1
    assert email.sent[0]["subject"] == "[상담신청] 테스트기업 - 홍길동 대표"
    assert "010-1234-5678" in email.sent[0]["text"]
    assert "테스트기업" in email.sent[0]["html"]

    assert len(telegram.sent) == 1
    assert "<b>테스트기업</b>" in telegram.sent[0]
    assert "Airtable에서 보기" in telegram.sent[0]


@pytest.mark.parametrize("missing", ["company", "name", "phone", "email", "consultTime"])
def test_consult_missing_required_field_has_no_side_effects(client, csrf_token, store, email, telegram, missing):
    response = post_consult(client, csrf_token, consult_payload(**{missing: "   "}))
    assert response.status_code == 400
    payload = response.get_json()
    assert payload["success"] is False
    assert payload["error"] == "필수 항목을 입력해주세요."
    assert store.calls_for("create") == []
    assert email.sent == []
    assert telegram.sent == []


def test_consult_optional_fields_may_be_empty(client, csrf_token, store):
    payload = consult_payload(bizno="", industry="", founded="", amount="", fundType="", message="")
    response = post_consult(client, csrf_token, payload)
    assert response.status_code == 200
    fields = store.calls_for("create")[0]["fields"]
    assert fields["사업자번호"] == ""
    assert fields["문의사항"] == ""


def test_consult_requires_csrf_token(client, store, email):
    response = client.post("/api/consult", json=consult_payload())
    assert response.status_code == 400
    assert response.get_json()["success"] is False
    assert store.calls_for("create") == []
    assert email.sent == []


def test_consult_accepts_form_post_with_checkbox_list(client, csrf_token, store):
    data = consult_payload(fundType=["운전자금", "시설자금"])
    data["_csrf_token"] = csrf_token
    response = client.post("/api/consult", data=data)
    assert response.status_code == 200
    fields = store.calls_for("create")[0]["fields"]
    assert fields["자금종류"] == "운전자금, 시설자금"
    assert "_csrf_token" not in fields


def test_consult_record_failure_is_advisory_by_default(client, csrf_token, store, email, telegram):
    store.failures["create"] = RecordStoreError("Airtable Error: 422")
    response = post_consult(client, csrf_token, consult_payload())
    assert response.status_code == 200
    assert response.get_json() == {"success": True}
    assert len(email.sent) == 1
    assert len(telegram.sent) == 1


def test_consult_notification_failures_do_not_reach_submitter(store):
    app = build_test_app(
        store,
        email=RecordingEmail(error=NotificationError("Gmail delivery failed")),
        telegram=RecordingTelegram(error=ConfigurationError("Telegram not configured")),
    )
    client = app.test_client()
    token = fetch_csrf_token(client)
    response = post_consult(client, token, consult_payload())
    assert response.status_code == 200
    assert len(store.calls_for("create")) == 1


def test_consult_strict_persistence_reports_record_failure(store, email, telegram):
    app = build_test_app(store, email, telegram, {"INTAKE_REQUIRE_PERSISTENCE": True})
    client = app.test_client()
    store.failures["create"] = RecordStoreError("Airtable Error: 503")
    response = post_consult(client, fetch_csrf_token(client), consult_payload())
    assert response.status_code == 502
    assert response.get_json()["success"] is False
    assert len(email.sent) == 1
    assert len(telegram.sent) == 1


def test_intake_service_collects_outcomes_in_task_order(store):
    lead_service = LeadService(store, table="고객접수")
    intake = IntakeService(
        lead_service,
        RecordingEmail(error=NotificationError("smtp down")),
        RecordingTelegram(),
        record_store_url="https://airtable.com/appTest/tblTest",
    )
    result = intake.submit(consult_payload())
    assert [outcome.name for outcome in result.outcomes] == [TASK_RECORD, TASK_EMAIL, TASK_TELEGRAM]
    assert result.persisted is True
    assert [outcome.name for outcome in result.failures] == [TASK_EMAIL]
    assert isinstance(result.failures[0].error, NotificationError)


def test_intake_service_render_failure_only_fails_that_channel(store):
    def broken_renderer(lead, received_at):
        raise RuntimeError("template missing")

    telegram = RecordingTelegram()
    email = RecordingEmail()
    intake = IntakeService(
        LeadService(store, table="고객접수"),
        email,
        telegram,
        html_renderer=broken_renderer,
    )
    result = intake.submit(consult_payload())
    assert len(store.calls_for("create")) == 1
    assert result.persisted is True
    assert [outcome.name for outcome in result.failures] == [TASK_EMAIL]
    assert isinstance(result.failures[0].error, RuntimeError)
    assert email.sent == []
    assert len(telegram.sent) == 1


def test_intake_service_strict_mode_raises_upstream_error(store):
    store.failures["create"] = RecordStoreError("Airtable Error: 500")
    intake = IntakeService(
        LeadService(store, table="고객접수"),
        RecordingEmail(),
        RecordingTelegram(),
        require_persistence=True,
    )
    with pytest.raises(UpstreamError):
        intake.submit(consult_payload())


def test_parse_consult_payload_trims_and_truncates():
    lead = parse_consult_payload(consult_payload(company="  공백기업  ", message="가" * 6000))
    assert lead["company"] == "공백기업"
    assert len(lead["message"]) == 5000
    with pytest.raises(ValidationError):
        parse_consult_payload(["not", "a", "dict"])


def test_telegram_message_escapes_user_text():
    lead = parse_consult_payload(consult_payload(company="<script>alert(1)</script> & Co", message="a < b"))
    message = build_telegram_message(lead, "2026. 3. 5. 오후 2:07:09", "https://airtable.com/app/tbl")
    assert "<script>" not in message
    assert "&lt;script&gt;alert(1)&lt;/script&gt; &amp; Co" in message
    assert "a &lt; b" in message
    assert '<a href="https://airtable.com/app/tbl">' in message


def test_email_subject_strips_header_breaks():
    subject = build_lead_email_subject({"company": "악성\r\nBcc: x@example.com", "name": "홍길동"})
    assert "\n" not in subject and "\r" not in subject
    assert subject.startswith("[상담신청] 악성 Bcc: x@example.com")


def test_korean_timestamp_formatting():
    assert format_korean_timestamp(datetime(2026, 3, 5, 14, 7, 9)) == "2026. 3. 5. 오후 2:07:09"
    assert format_korean_timestamp(datetime(2026, 3, 5, 0, 0, 1)) == "2026. 3. 5. 오전 12:00:01"
    assert format_korean_timestamp(datetime(2026, 12, 31, 12, 30, 0)) == "2026. 12. 31. 오후 12:30:00"


def test_business_timestamp_uses_seoul_time():
    now = datetime(2026, 3, 5, 5, 7, 9, tzinfo=timezone.utc)
    assert business_timestamp("Asia/Seoul", now) == "2026. 3. 5. 오후 2:07:09"
    late = datetime(2026, 3, 5, 16, 0, 0, tzinfo=timezone.utc)
    assert business_timestamp("Asia/Seoul", late) == "2026. 3. 6. 오전 1:00:00"
