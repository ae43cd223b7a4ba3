"""Helper functions for the application."""
from typing import Any

from flask import jsonify


def handle_error(error, status_code: int):
    """Handle application errors with consistent format."""
    return jsonify({
        'error': True,
        'message': getattr(error, 'description', None) or str(error),
        'status_code': status_code
    }), status_code


def success_response(data: Any = None, message: str = "Success", status_code: int = 200):
    """Return consistent success response."""
    response = {
        'error': False,
        'message': message
    }

    if data is not None:
        response['data'] = data

    return jsonify(response), status_code


def error_response(message: str, status_code: int = 400):
    """Return consistent error response."""
    return jsonify({
        'error': True,
        'message': message,
        'status_code': status_code
    }), status_code


def client_ip(request) -> str:
    """First address of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr
