from flask import jsonify


def _token_error(error, message):
    return jsonify({'success': False, 'error': error, 'message': message}), 401


def register_jwt_handlers(jwt):
    """Register JWT error handlers. Every token failure answers 401 in the API error shape."""

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        if jwt_payload.get('type') == 'refresh':
            return _token_error('Token expired', 'Your session has ended. Please log in again.')
        return _token_error('Token expired', 'The access token has expired. Use your refresh token.')

    @jwt.invalid_token_loader
    def invalid_token_callback(reason):
        return _token_error('Invalid token', 'The token is malformed or its signature is invalid.')

    @jwt.unauthorized_loader
    def missing_token_callback(reason):
        return _token_error('Authorization required', 'Send a Bearer token in the Authorization header.')

    @jwt.revoked_token_loader
    def revoked_token_callback(jwt_header, jwt_payload):
        return _token_error('Token revoked', 'This token is no longer valid. Please log in again.')

    @jwt.token_verification_failed_loader
    def token_verification_failed_callback(jwt_header, jwt_payload):
        return _token_error('Token verification failed', 'The token could not be verified.')
