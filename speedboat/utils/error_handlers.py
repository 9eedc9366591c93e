from flask import jsonify, current_app, request
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from speedboat import db
from speedboat.utils.errors import ApiError


def register_error_handlers(app):
    """Register error handlers for the application"""

    @app.errorhandler(ApiError)
    def handle_api_error(error):
        db.session.rollback()
        if error.status_code >= 500:
            current_app.logger.error('[API_ERROR] status=%s message=%s', error.status_code, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({'success': False, 'error': 'Bad request', 'message': str(error)}), 400

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({'success': False, 'error': 'Insufficient permissions'}), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(429)
    def too_many_requests(error):
        current_app.logger.warning('[RATE_LIMITED] path=%s limit=%s', request.path, error.description)
        return jsonify({
            'success': False,
            'error': 'Too many requests',
            'message': f'Rate limit exceeded ({error.description}). Please try again later.'
        }), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        db.session.rollback()
        current_app.logger.warning('[DB_INTEGRITY] %s', error.orig)
        return jsonify({'success': False, 'error': 'Duplicate entry or constraint violation'}), 409

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(error):
        db.session.rollback()
        current_app.logger.exception('[DB_ERROR]')
        return jsonify({'success': False, 'error': 'An error occurred with the database'}), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        current_app.logger.exception('[UNHANDLED_ERROR]')
        return jsonify({'success': False, 'error': 'An unexpected error occurred'}), 500
