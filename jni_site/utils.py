"""Shared utility functions used across route and service modules."""
import html
import ipaddress
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from flask import request

DEFAULT_TIMEZONE = 'Asia/Seoul'


def utc_now():
    return datetime.now(timezone.utc)


def business_now(tz_name=DEFAULT_TIMEZONE, now=None):
    current = now or utc_now()
    return current.astimezone(ZoneInfo(tz_name or DEFAULT_TIMEZONE))


def format_korean_timestamp(value):
    """Render a datetime the way a ko-KR locale prints it: ``2026. 3. 5. 오후 2:07:09``."""
    meridiem = '오전' if value.hour < 12 else '오후'
    hour = value.hour % 12 or 12
    return f"{value.year}. {value.month}. {value.day}. {meridiem} {hour}:{value.minute:02d}:{value.second:02d}"


def business_timestamp(tz_name=DEFAULT_TIMEZONE, now=None):
    return format_korean_timestamp(business_now(tz_name, now))


def business_date(days_ago=0, tz_name=DEFAULT_TIMEZONE, now=None):
    local = business_now(tz_name, now) - timedelta(days=days_ago)
    return local.date().isoformat()


def clean_text(value, max_length=255):
    if value is None:
        return ''
    return str(value).strip()[:max_length]


def escape_html(value):
    return html.escape(value or '', quote=False)


def normalized_ip(value):
    candidate = (value or '').split(',', 1)[0].strip()
    if not candidate:
        return ''
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return ''


def get_request_ip():
    # request.remote_addr is proxy-aware when ProxyFix is enabled by app config.
    remote_ip = normalized_ip(request.remote_addr)
    return remote_ip or 'unknown'


def split_recipients(raw):
    recipients = []
    seen = set()
    for item in (raw or '').split(','):
        cleaned = safe_header_value(item, max_length=320)
        normalized = cleaned.lower()
        if cleaned and normalized not in seen:
            recipients.append(cleaned)
            seen.add(normalized)
    return recipients


def safe_header_value(value, max_length=240):
    # Strip CR/LF and collapse whitespace so values cannot inject headers.
    cleaned = ' '.join((value or '').replace('\r', ' ').replace('\n', ' ').split())
    return cleaned[:max_length]
