"""Pure projections over loaded lead and post lists.

The dashboard script applies the same rules in the browser; these helpers
serve the server-rendered overview and keep the rules testable.
"""

try:
    from .leads import LEAD_STATUSES, STATUS_NEW, STATUS_WAITING, STATUS_DONE
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from leads import LEAD_STATUSES, STATUS_NEW, STATUS_WAITING, STATUS_DONE

FILTER_ALL = '전체'
LEAD_STATUS_TABS = (FILTER_ALL,) + LEAD_STATUSES
RECENT_LIMIT = 5


def filter_leads(leads, status=FILTER_ALL, query=''):
    query = (query or '').strip().lower()
    matches = []
    for lead in leads:
        if status and status != FILTER_ALL and lead.get('status') != status:
            continue
        if query and not (
            query in (lead.get('company') or '').lower()
            or query in (lead.get('name') or '').lower()
            or query in (lead.get('phone') or '')
        ):
            continue
        matches.append(lead)
    return matches


def filter_posts(posts, category=FILTER_ALL):
    if not category or category == FILTER_ALL:
        return list(posts)
    return [post for post in posts if post.get('category') == category]


def apply_status_change(stats, old_status, new_status):
    """Move one lead between status buckets; ``total`` never changes."""
    updated = dict(stats)
    if old_status == new_status:
        return updated
    if old_status in updated and updated[old_status] > 0:
        updated[old_status] -= 1
    updated[new_status] = updated.get(new_status, 0) + 1
    return updated


def overview_cards(stats, post_count):
    return {
        'total': stats.get('total', 0),
        'pending': stats.get(STATUS_NEW, 0) + stats.get(STATUS_WAITING, 0),
        'done': stats.get(STATUS_DONE, 0),
        'posts': post_count,
    }
