"""
API 錯誤類型

Service / helper 函數直接 raise 這些 exception,
由 app.py 註冊的 error handler 統一轉成 JSON 回應:

    {"error": "<code>", "message": "<訊息>", "status": <HTTP status>}
"""

from flask import jsonify


class APIError(Exception):
    status_code = 500
    error_code = 'internal_server_error'
    default_message = 'An internal error occurred'

    def __init__(self, message=None):
        super().__init__(message)
        self.message = message or self.default_message

    def to_dict(self):
        return {
            'error': self.error_code,
            'message': self.message,
            'status': self.status_code
        }


class BadRequestError(APIError):
    """400: 輸入不合法,或唯一性衝突 (沿用 400 而非 409)"""
    status_code = 400
    error_code = 'bad_request'
    default_message = 'The request is malformed or invalid'


class RequestValidationError(BadRequestError):
    """400: marshmallow 驗證失敗,message 是每個欄位的錯誤訊息列表"""
    error_code = 'validation_error'

    def __init__(self, details):
        self.details = details
        super().__init__(flatten_messages(details))

    def to_dict(self):
        payload = super().to_dict()
        payload['details'] = self.details
        return payload


class AuthenticationError(APIError):
    status_code = 401
    error_code = 'unauthorized'
    default_message = 'Authentication required'


class ForbiddenError(APIError):
    status_code = 403
    error_code = 'forbidden'
    default_message = 'Forbidden resource'


class NotFoundError(APIError):
    status_code = 404
    error_code = 'not_found'
    default_message = 'The requested resource does not exist'


def flatten_messages(details, prefix=''):
    """
    把 marshmallow 的巢狀錯誤 dict 攤平成字串列表

    {'email': ['Not a valid email address.']}
    -> ['email: Not a valid email address.']
    """
    if isinstance(details, dict):
        messages = []
        for field, value in details.items():
            key = f'{prefix}.{field}' if prefix else str(field)
            messages.extend(flatten_messages(value, key))
        return messages

    if isinstance(details, (list, tuple)):
        messages = []
        for item in details:
            messages.extend(flatten_messages(item, prefix))
        return messages

    return [f'{prefix}: {details}' if prefix else str(details)]


def error_response(error):
    return jsonify(error.to_dict()), error.status_code
