"""Consultation intake: validate, persist the lead and notify staff.

The three side effects run concurrently and are joined with a per-task
outcome. A failing task never cancels the others; failures are logged for
manual follow-up and do not reach the submitter unless strict persistence is
switched on, in which case only a failed record write is reported.
"""
import logging
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor

try:
    from .errors import UpstreamError, ValidationError
    from .leads import LEAD_FIELDS, OPTIONAL_LEAD_FIELDS, REQUIRED_LEAD_FIELDS, STATUS_NEW
    from .notifications import build_lead_email_subject, build_lead_email_text, build_telegram_message
    from .utils import business_timestamp, clean_text
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from errors import UpstreamError, ValidationError
    from leads import LEAD_FIELDS, OPTIONAL_LEAD_FIELDS, REQUIRED_LEAD_FIELDS, STATUS_NEW
    from notifications import build_lead_email_subject, build_lead_email_text, build_telegram_message
    from utils import business_timestamp, clean_text

TASK_RECORD = 'record'
TASK_EMAIL = 'email'
TASK_TELEGRAM = 'telegram'

FIELD_MAX_LENGTHS = {
    'company': 200,
    'bizno': 40,
    'name': 100,
    'phone': 40,
    'email': 200,
    'industry': 100,
    'founded': 20,
    'consultTime': 100,
    'amount': 100,
    'fundType': 200,
    'message': 5000,
}

TaskOutcome = namedtuple('TaskOutcome', ['name', 'ok', 'error'])


class IntakeResult:
    def __init__(self, lead, outcomes):
        self.lead = lead
        self.outcomes = list(outcomes)

    @property
    def failures(self):
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def persisted(self):
        return any(outcome.name == TASK_RECORD and outcome.ok for outcome in self.outcomes)


def _joined(value):
    # Checkbox groups arrive as lists from the form.
    if isinstance(value, (list, tuple)):
        return ', '.join(str(item).strip() for item in value if str(item).strip())
    return value


def parse_consult_payload(data):
    """Return a cleaned lead dict or raise ``ValidationError`` when a required field is empty."""
    if not isinstance(data, dict):
        raise ValidationError()
    lead = {}
    for key in REQUIRED_LEAD_FIELDS + OPTIONAL_LEAD_FIELDS:
        lead[key] = clean_text(_joined(data.get(key)), FIELD_MAX_LENGTHS[key])
    if any(not lead[key] for key in REQUIRED_LEAD_FIELDS):
        raise ValidationError()
    return lead


class IntakeService:
    def __init__(
        self,
        lead_service,
        email_dispatcher,
        telegram_dispatcher,
        timezone='Asia/Seoul',
        record_store_url='',
        require_persistence=False,
        html_renderer=None,
        logger=None,
    ):
        self.lead_service = lead_service
        self.email_dispatcher = email_dispatcher
        self.telegram_dispatcher = telegram_dispatcher
        self.timezone = timezone
        self.record_store_url = record_store_url
        self.require_persistence = require_persistence
        self.html_renderer = html_renderer
        self.logger = logger or logging.getLogger(__name__)

    def _record_fields(self, lead, received_at):
        fields = {LEAD_FIELDS[key]: lead[key] for key in REQUIRED_LEAD_FIELDS + OPTIONAL_LEAD_FIELDS}
        fields[LEAD_FIELDS['createdAt']] = received_at
        fields[LEAD_FIELDS['status']] = STATUS_NEW
        return fields

    def _email_content(self, lead, received_at):
        html_body = self.html_renderer(lead, received_at) if self.html_renderer else None
        return build_lead_email_subject(lead), build_lead_email_text(lead, received_at), html_body

    def _notification_task(self, name, render, send):
        """Render in the calling thread; a rendering error becomes the outcome of that channel alone."""
        try:
            content = render()
        except Exception as exc:
            self.logger.exception(f'Consult {name} notification could not be rendered.')
            error = exc

            def failed():
                raise error

            return name, failed
        return name, lambda: send(*content)

    def _run_tasks(self, tasks):
        outcomes = []
        with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix='intake') as executor:
            futures = [(name, executor.submit(task)) for name, task in tasks]
            for name, future in futures:
                try:
                    future.result()
                except Exception as exc:
                    outcomes.append(TaskOutcome(name, False, exc))
                else:
                    outcomes.append(TaskOutcome(name, True, None))
        return outcomes

    def submit(self, data):
        lead = parse_consult_payload(data)
        received_at = business_timestamp(self.timezone)

        # Render everything up front; worker threads only do I/O.
        record_fields = self._record_fields(lead, received_at)
        result = IntakeResult(lead, self._run_tasks([
            (TASK_RECORD, lambda: self.lead_service.create_lead(record_fields)),
            self._notification_task(
                TASK_EMAIL,
                lambda: self._email_content(lead, received_at),
                self.email_dispatcher.send,
            ),
            self._notification_task(
                TASK_TELEGRAM,
                lambda: (build_telegram_message(lead, received_at, self.record_store_url),),
                self.telegram_dispatcher.send,
            ),
        ]))

        if result.failures:
            summary = ', '.join(f'{outcome.name}: {outcome.error}' for outcome in result.failures)
            self.logger.error(f'Consult intake partial failures ({len(result.failures)}/3) company={lead["company"]!r}: {summary}')
        else:
            self.logger.info(f'Consult intake completed company={lead["company"]!r}')

        if self.require_persistence and not result.persisted:
            raise UpstreamError('상담 접수 저장에 실패했습니다. 잠시 후 다시 시도해주세요.')
        return result
