class ApiError(Exception):
    """Base exception rendered as a JSON error response"""

    status_code = 500

    def __init__(self, message='An error occurred', status_code=None, details=None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        data = {'success': False, 'error': self.message}
        if self.details:
            data['details'] = self.details
        return data


class ValidationError(ApiError):
    """Invalid input"""
    status_code = 400

    def __init__(self, message, field=None, details=None):
        details = dict(details or {})
        if field:
            details['field'] = field
        super().__init__(message, details=details)


class AuthenticationError(ApiError):
    status_code = 401

    def __init__(self, message='Authentication failed'):
        super().__init__(message)


class AuthorizationError(ApiError):
    status_code = 403

    def __init__(self, message='Access denied'):
        super().__init__(message)


class NotFoundError(ApiError):
    status_code = 404

    def __init__(self, entity, identifier=None):
        message = f'{entity} not found'
        details = {'entity': entity}
        if identifier is not None:
            details['id'] = identifier
        super().__init__(message, details=details)


class ConflictError(ApiError):
    """Request is valid but clashes with the current state of a resource"""
    status_code = 409


class InvalidTransitionError(ConflictError):
    def __init__(self, kind, current, target):
        super().__init__(
            f'Invalid {kind} status transition: {current.value} -> {target.value}',
            details={'from': current.value, 'to': target.value}
        )


class AccountLockedError(ApiError):
    status_code = 423

    def __init__(self, locked_until):
        super().__init__(
            'Account is temporarily locked due to too many failed login attempts',
            details={'locked_until': locked_until.isoformat()}
        )


class GatewayError(ApiError):
    """Payment gateway call failed"""
    status_code = 502

    def __init__(self, message, http_status=None, response_body=None):
        details = {}
        if http_status is not None:
            details['gateway_status'] = http_status
        super().__init__(f'Payment gateway error: {message}', details=details)
        self.http_status = http_status
        self.response_body = response_body
