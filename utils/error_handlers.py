"""全局错误处理"""
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from extensions import logger
from utils.exceptions import AuthError


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AuthError)
    def handle_auth_error(err: AuthError):
        return jsonify({'success': False, 'message': str(err), 'error': err.code}), err.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        return jsonify({'success': False, 'message': err.description, 'error': err.name}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(err: Exception):
        logger.error(f'未处理的异常: {str(err)}', exc_info=True)
        if app.debug:
            return jsonify({'success': False, 'message': str(err), 'error': 'SERVER_ERROR'}), 500
        return jsonify({'success': False, 'message': '服务器内部错误', 'error': 'SERVER_ERROR'}), 500
