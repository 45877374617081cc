import logging

try:
    from .errors import ValidationError
    from .field_maps import (
        FIELD_AMOUNT,
        FIELD_BODY,
        FIELD_CATEGORY,
        FIELD_DATE,
        FIELD_SUMMARY,
        FIELD_THUMBNAIL,
        FIELD_TITLE,
        FIELD_VISIBILITY,
    )
except ImportError:  # pragma: no cover - fallback when running from package cwd
    from errors import ValidationError
    from field_maps import (
        FIELD_AMOUNT,
        FIELD_BODY,
        FIELD_CATEGORY,
        FIELD_DATE,
        FIELD_SUMMARY,
        FIELD_THUMBNAIL,
        FIELD_TITLE,
        FIELD_VISIBILITY,
    )


def post_from_record(record, field_map, include_body=False):
    fields = record.get('fields') or {}
    post = {
        'id': record.get('id'),
        'title': field_map.resolve(fields, FIELD_TITLE),
        'summary': field_map.resolve(fields, FIELD_SUMMARY),
        'category': field_map.resolve(fields, FIELD_CATEGORY),
        'amount': field_map.resolve(fields, FIELD_AMOUNT),
        'date': field_map.resolve(fields, FIELD_DATE) or record.get('createdTime') or '',
        'isPublic': field_map.resolve(fields, FIELD_VISIBILITY),
        'thumbnail': field_map.resolve(fields, FIELD_THUMBNAIL),
    }
    if include_body:
        post['body'] = field_map.resolve(fields, FIELD_BODY)
    return post


class BoardService:
    def __init__(self, store, table, field_map, max_records=100, logger=None):
        self.store = store
        self.table = table
        self.field_map = field_map
        self.max_records = max_records
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, store, field_map, config, logger=None):
        return cls(
            store,
            table=config.get('AIRTABLE_BOARD_TABLE_ID'),
            field_map=field_map,
            max_records=int(config.get('BOARD_MAX_RECORDS') or 100),
            logger=logger,
        )

    @staticmethod
    def _require_id(post_id):
        post_id = (post_id or '').strip()
        if not post_id:
            raise ValidationError('게시글 ID가 필요합니다.')
        return post_id

    def list_posts(self, public_only=False):
        records = self.store.list_records(self.table, max_records=self.max_records, fields_by_id=True)
        posts = [post_from_record(record, self.field_map) for record in records]
        if public_only:
            posts = [post for post in posts if post['isPublic']]
        return posts

    def get_post(self, post_id):
        record = self.store.get_record(self.table, self._require_id(post_id), fields_by_id=True)
        return post_from_record(record, self.field_map, include_body=True)

    def delete_post(self, post_id):
        post_id = self._require_id(post_id)
        self.store.delete_record(self.table, post_id)
        self.logger.info(f'Board post deleted (id={post_id})')
