"""
Error taxonomy shared by the HTTP routes and the live channel.
HTTP requests get the status code, WebSocket senders get an `error` frame.
"""
from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base class for errors reported back to the initiating user"""
    code = 'chat_error'
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        data = {'code': self.code, 'message': self.message}
        if self.details:
            data['details'] = self.details
        return data


class AuthenticationError(ChatError):
    code = 'authentication_error'
    status_code = 401


class AuthorizationError(ChatError):
    code = 'authorization_error'
    status_code = 403


class NotFoundError(ChatError):
    code = 'not_found'
    status_code = 404


class ValidationError(ChatError):
    code = 'validation_error'
    status_code = 422


class RateLimitError(ChatError):
    code = 'rate_limited'
    status_code = 429


class PersistenceError(ChatError):
    code = 'persistence_error'
    status_code = 503
