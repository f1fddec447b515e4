from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

# ============================================
# API 錯誤類別
# ============================================
#
# 業務邏輯直接 raise,由 app.py 註冊的 error handler 統一轉成 JSON:
# {'status': <http code>, 'message': ..., 其他欄位}


class ApiError(Exception):
    status_code = 500
    default_message = 'Server error.'

    def __init__(self, message=None, payload=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.payload = payload or {}

    def to_response(self):
        body = {'status': self.status_code, 'message': self.message}
        body.update(self.payload)
        return jsonify(body), self.status_code


class ValidationError(ApiError):
    """欄位缺少、格式錯誤或多了不允許的欄位"""
    status_code = 400
    default_message = 'Validation failed'

    def __init__(self, message=None, errors=None):
        payload = {'errors': errors} if errors is not None else None
        super().__init__(message, payload)


class InvalidCredential(ApiError):
    status_code = 401
    default_message = 'Incorrect password.'


class Unauthorized(ApiError):
    status_code = 401
    default_message = 'You are not authorized to perform this action.'


class NoToken(Unauthorized):
    default_message = 'No JWT token provided.'


class Forbidden(ApiError):
    status_code = 403
    default_message = 'Access denied.'


class NotFound(ApiError):
    status_code = 404
    default_message = 'The requested resource does not exist'


class Conflict(ApiError):
    status_code = 409
    default_message = 'Resource already exists'


class InternalError(ApiError):
    status_code = 500
    default_message = 'Server error.'


def register_error_handlers(app, db):
    """把 ApiError 和未預期的錯誤都轉成統一格式"""

    @app.errorhandler(ApiError)
    def handle_api_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{type(error).__name__}: {error.message}")
        return error.to_response()

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'status': 400,
            'message': 'The request is malformed or invalid'
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'status': 404,
            'message': 'The requested resource does not exist'
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'status': 405,
            'message': 'The HTTP method is not allowed for this endpoint'
        }), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        app.logger.warning("Rate limit exceeded")
        return jsonify({
            'status': 429,
            'message': 'Too many requests. Please try again later.'
        }), 429

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(error):
        # 不洩漏錯誤細節給前端
        db.session.rollback()
        app.logger.error(f"Database error: {str(error)}", exc_info=True)
        return jsonify({
            'status': 500,
            'message': 'Server error.'
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """最後的防線,捕捉所有沒被處理的 exception"""
        if isinstance(error, HTTPException):
            return jsonify({
                'status': error.code,
                'message': error.description
            }), error.code

        db.session.rollback()
        app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)
        return jsonify({
            'status': 500,
            'message': 'An unexpected error occurred. Please try again later.'
        }), 500
