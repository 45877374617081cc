import base64
import json
import logging
import smtplib
import urllib.error
import urllib.parse
import urllib.request
from email.message import EmailMessage
from email.utils import formataddr

try:
    from .errors import ConfigurationError, NotificationError
    from .utils import escape_html, safe_header_value, split_recipients
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from errors import ConfigurationError, NotificationError
    from utils import escape_html, safe_header_value, split_recipients

GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
GMAIL_SMTP_HOST = 'smtp.gmail.com'
GMAIL_SMTP_SSL_PORT = 465


def build_lead_email_subject(lead):
    company = safe_header_value(lead.get('company'), max_length=120)
    name = safe_header_value(lead.get('name'), max_length=60)
    return f"[상담신청] {company} - {name} 대표"


def build_lead_email_text(lead, received_at):
    lines = [
        "홈페이지 무료상담 폼으로 신규 상담이 접수되었습니다.",
        "",
        f"기업명: {lead.get('company')}",
        f"사업자번호: {lead.get('bizno') or '-'}",
        f"대표자명: {lead.get('name')}",
        f"연락처: {lead.get('phone')}",
        f"이메일: {lead.get('email')}",
        f"희망시간: {lead.get('consultTime')}",
        "",
        f"업종: {lead.get('industry') or '-'}",
        f"설립연도: {lead.get('founded') or '-'}",
        f"필요 자금 규모: {lead.get('amount') or '미선택'}",
        f"자금 종류: {lead.get('fundType') or '미선택'}",
    ]
    if lead.get('message'):
        lines.extend(["", "문의내용:", lead['message']])
    lines.extend(["", f"접수 시각: {received_at}"])
    return "\n".join(lines)


def build_telegram_message(lead, received_at, record_store_url=''):
    def value(key, fallback='-'):
        return escape_html(lead.get(key) or fallback)

    msg = '🔔 <b>JNI 신규 상담 접수</b>\n\n'
    msg += '👤 <b>고객정보</b>\n'
    msg += f"├ 기업명: <b>{value('company', '')}</b>\n"
    msg += f"├ 사업자번호: {value('bizno', '')}\n"
    msg += f"├ 대표자명: <b>{value('name', '')}</b>\n"
    msg += f"├ 연락처: <code>{value('phone', '')}</code>\n"
    msg += f"├ 이메일: {value('email', '')}\n"
    msg += f"├ 업종: {value('industry')}\n"
    msg += f"└ 설립연도: {value('founded')}\n\n"
    msg += '💰 <b>자금정보</b>\n'
    msg += f"├ 통화가능: <b>{value('consultTime', '')}</b>\n"
    msg += f"├ 규모: {value('amount')}\n"
    msg += f"└ 종류: {value('fundType')}\n"
    message = lead.get('message') or ''
    if message and message != '-':
        msg += f"\n💬 <b>문의</b>\n{escape_html(message)}\n"
    msg += f"\n📅 {escape_html(received_at)}"
    if record_store_url:
        link = escape_html(record_store_url).replace('"', '&quot;')
        msg += f'\n\n📊 <a href="{link}">Airtable에서 보기</a>'
    return msg


class EmailDispatcher:
    """Sends staff notification email through the first configured provider.

    Providers are tried in order: Gmail with an OAuth2 refresh token, the
    Mailgun HTTP API, then plain SMTP. Each provider returns ``None`` when it
    is not configured, ``True`` on success and raises ``NotificationError``
    when delivery fails. Nothing is retried.
    """

    def __init__(self, config, logger=None):
        self.config = dict(config)
        self.logger = logger or logging.getLogger(__name__)
        self.recipients = split_recipients(self.config.get('LEAD_NOTIFICATION_EMAILS'))

    @classmethod
    def from_config(cls, config, logger=None):
        keys = (
            'GMAIL_USER', 'GMAIL_CLIENT_ID', 'GMAIL_CLIENT_SECRET', 'GMAIL_REFRESH_TOKEN',
            'MAILGUN_API_KEY', 'MAILGUN_DOMAIN',
            'SMTP_HOST', 'SMTP_PORT', 'SMTP_USERNAME', 'SMTP_PASSWORD', 'SMTP_USE_TLS', 'SMTP_USE_SSL',
            'MAIL_FROM', 'MAIL_FROM_NAME', 'LEAD_NOTIFICATION_EMAILS',
        )
        return cls({key: config.get(key) for key in keys}, logger=logger)

    @property
    def mail_from(self):
        address = safe_header_value(self.config.get('MAIL_FROM') or 'no-reply@localhost', max_length=254)
        name = safe_header_value(self.config.get('MAIL_FROM_NAME') or '', max_length=80)
        return formataddr((name, address)) if name else address

    def _build_message(self, subject, text_body, html_body, recipients):
        message = EmailMessage()
        message['Subject'] = subject
        message['From'] = self.mail_from
        message['To'] = ', '.join(recipients)
        message.set_content(text_body)
        if html_body:
            message.add_alternative(html_body, subtype='html')
        return message

    def _gmail_access_token(self):
        data = urllib.parse.urlencode({
            'client_id': self.config.get('GMAIL_CLIENT_ID'),
            'client_secret': self.config.get('GMAIL_CLIENT_SECRET'),
            'refresh_token': self.config.get('GMAIL_REFRESH_TOKEN'),
            'grant_type': 'refresh_token',
        }).encode('utf-8')
        req = urllib.request.Request(GOOGLE_TOKEN_URL, data=data, method='POST')
        req.add_header('Content-Type', 'application/x-www-form-urlencoded')
        try:
            with urllib.request.urlopen(req, timeout=15) as resp:  # nosec B310
                payload = json.loads(resp.read().decode('utf-8'))
        except urllib.error.HTTPError as e:
            error_body = e.read().decode('utf-8', errors='replace')
            raise NotificationError(f'Google token refresh failed {e.code}: {error_body[:300]}') from e
        except (urllib.error.URLError, OSError, ValueError) as e:
            raise NotificationError(f'Google token refresh failed: {e}') from e
        token = payload.get('access_token')
        if not token:
            raise NotificationError('Google token refresh returned no access token.')
        return token

    def _send_via_gmail(self, subject, text_body, html_body, recipients):
        user = (self.config.get('GMAIL_USER') or '').strip()
        required = ('GMAIL_CLIENT_ID', 'GMAIL_CLIENT_SECRET', 'GMAIL_REFRESH_TOKEN')
        if not user or not all(self.config.get(key) for key in required):
            return None

        access_token = self._gmail_access_token()
        auth_string = f'user={user}\x01auth=Bearer {access_token}\x01\x01'
        message = self._build_message(subject, text_body, html_body, recipients)
        try:
            with smtplib.SMTP_SSL(host=GMAIL_SMTP_HOST, port=GMAIL_SMTP_SSL_PORT, timeout=12) as smtp:
                smtp.auth('XOAUTH2', lambda challenge=None: auth_string)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f'Gmail delivery failed: {e}') from e
        self.logger.info('Gmail notification email sent.')
        return True

    def _send_via_mailgun(self, subject, text_body, html_body, recipients):
        """Send email via Mailgun HTTP API (no SMTP needed)."""
        api_key = (self.config.get('MAILGUN_API_KEY') or '').strip()
        domain = (self.config.get('MAILGUN_DOMAIN') or '').strip()
        if not api_key or not domain:
            return None

        url = f"https://api.mailgun.net/v3/{domain}/messages"
        fields = {
            'from': self.mail_from,
            'to': ', '.join(recipients),
            'subject': subject,
            'text': text_body,
        }
        if html_body:
            fields['html'] = html_body
        data = urllib.parse.urlencode(fields).encode('utf-8')

        auth = base64.b64encode(f"api:{api_key}".encode()).decode()

        req = urllib.request.Request(url, data=data, method='POST')
        req.add_header('Authorization', f'Basic {auth}')

        try:
            with urllib.request.urlopen(req, timeout=15):  # nosec B310
                self.logger.info('Mailgun email sent successfully.')
                return True
        except urllib.error.HTTPError as e:
            error_body = e.read().decode('utf-8', errors='replace')
            raise NotificationError(f'Mailgun API error {e.code}: {error_body[:300]}') from e
        except (urllib.error.URLError, OSError) as e:
            raise NotificationError(f'Mailgun email delivery failed: {e}') from e

    def _send_via_smtp(self, subject, text_body, html_body, recipients):
        host = (self.config.get('SMTP_HOST') or '').strip()
        if not host:
            return None

        port = int(self.config.get('SMTP_PORT') or 587)
        username = self.config.get('SMTP_USERNAME') or ''
        password = self.config.get('SMTP_PASSWORD') or ''
        use_ssl = bool(self.config.get('SMTP_USE_SSL'))
        use_tls = bool(self.config.get('SMTP_USE_TLS'))
        message = self._build_message(subject, text_body, html_body, recipients)

        try:
            if use_ssl:
                smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=12)
            else:
                smtp = smtplib.SMTP(host=host, port=port, timeout=12)

            with smtp:
                if use_tls and not use_ssl:
                    smtp.starttls()
                if username and password:
                    smtp.login(username, password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f'SMTP email delivery failed: {e}') from e
        return True

    def send(self, subject, text_body, html_body=None, recipients=None):
        recipients = recipients or self.recipients
        if not recipients:
            raise ConfigurationError('LEAD_NOTIFICATION_EMAILS (or GMAIL_USER) not configured')
        safe_subject = safe_header_value(subject, max_length=240)

        for provider in (self._send_via_gmail, self._send_via_mailgun, self._send_via_smtp):
            result = provider(safe_subject, text_body, html_body, recipients)
            if result is not None:
                return result
        raise ConfigurationError('No email provider configured (set GMAIL_* , MAILGUN_API_KEY+MAILGUN_DOMAIN or SMTP_HOST).')


class TelegramDispatcher:
    def __init__(self, token, chat_id, api_url='https://api.telegram.org', logger=None):
        self.token = token
        self.chat_id = chat_id
        self.api_url = (api_url or 'https://api.telegram.org').rstrip('/')
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, logger=None):
        return cls(
            token=config.get('TELEGRAM_BOT_TOKEN'),
            chat_id=config.get('TELEGRAM_CHAT_ID'),
            api_url=config.get('TELEGRAM_API_URL'),
            logger=logger,
        )

    def send(self, text):
        if not self.token or not self.chat_id:
            raise ConfigurationError('Telegram not configured')

        body = json.dumps({
            'chat_id': self.chat_id,
            'text': text,
            'parse_mode': 'HTML',
            'disable_web_page_preview': True,
        }, ensure_ascii=False).encode('utf-8')
        req = urllib.request.Request(f'{self.api_url}/bot{self.token}/sendMessage', data=body, method='POST')
        req.add_header('Content-Type', 'application/json')

        try:
            with urllib.request.urlopen(req, timeout=12) as resp:  # nosec B310
                payload = json.loads(resp.read().decode('utf-8') or '{}')
        except urllib.error.HTTPError as e:
            error_body = e.read().decode('utf-8', errors='replace')
            raise NotificationError(f'Telegram API error {e.code}: {error_body[:300]}') from e
        except (urllib.error.URLError, OSError, ValueError) as e:
            raise NotificationError(f'Telegram delivery failed: {e}') from e
        if not payload.get('ok', False):
            raise NotificationError(f"Telegram rejected message: {payload.get('description', 'unknown error')}")
        self.logger.info('Telegram notification sent.')
        return True
