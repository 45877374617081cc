"""Error taxonomy shared by the services and the JSON API boundary."""


class SiteError(Exception):
    status_code = 500
    public_message = '서버 오류가 발생했습니다.'

    def __init__(self, message=None):
        super().__init__(message or self.public_message)


class ValidationError(SiteError):
    status_code = 400
    public_message = '필수 항목을 입력해주세요.'


class NotFoundError(SiteError):
    status_code = 404
    public_message = '요청한 항목을 찾을 수 없습니다.'


class UpstreamError(SiteError):
    """An external service was unreachable or answered with a failure."""

    status_code = 500


class ConfigurationError(UpstreamError):
    """A credential the operation depends on is not configured."""


class NotificationError(UpstreamError):
    pass
