"""
Messaging API routes: connect, test and send through channel integrations
"""

from flask import Blueprint, request, jsonify, current_app
import logging

logger = logging.getLogger(__name__)

messaging_bp = Blueprint('messaging', __name__)

# Result error codes that mean the caller sent something unusable
_CLIENT_ERRORS = {'INVALID_DATA', 'CONFIGURATION_ERROR', 'UNSUPPORTED_PLATFORM', 'CONNECTION_FAILED'}
_UPSTREAM_ERRORS = {'PROVIDER_UNAVAILABLE', 'PROVIDER_ERROR'}


def _status_for(error_code):
    if error_code == 'NOT_FOUND':
        return 404
    if error_code in _UPSTREAM_ERRORS:
        return 502
    if error_code in _CLIENT_ERRORS:
        return 400
    return 500


@messaging_bp.route('/integrations/<int:integration_id>/messages', methods=['POST'])
def send_message(integration_id):
    """Send a message and return {success, message_id?, error?}"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'JSON body is required'}), 400

    messaging_service = current_app.services.get('messaging_integration')
    result = messaging_service.send_message(integration_id, data)
    if result.is_failure:
        return jsonify({'success': False, 'error': result.error, 'error_code': result.error_code}), \
            _status_for(result.error_code)

    send_result = result.data
    if not send_result.success:
        return jsonify(send_result.to_dict()), _status_for(send_result.error_code)
    return jsonify(send_result.to_dict()), 200


@messaging_bp.route('/integrations/test', methods=['POST'])
def test_integration():
    """Test a channel config without storing it"""
    data = request.get_json(silent=True) or {}
    platform = data.get('platform')
    if not platform:
        return jsonify({'success': False, 'error': 'platform is required'}), 400

    messaging_service = current_app.services.get('messaging_integration')
    result = messaging_service.test_connection(platform, data.get('config') or {})
    if result.is_failure:
        return jsonify({'success': False, 'error': result.error, 'error_code': result.error_code}), \
            _status_for(result.error_code)
    return jsonify(result.data.to_dict()), 200


@messaging_bp.route('/integrations', methods=['POST'])
def connect_integration():
    """Test a channel config and store it as a new integration"""
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id')
    platform = data.get('platform')
    if not user_id or not platform:
        return jsonify({'success': False, 'error': 'user_id and platform are required'}), 400

    messaging_service = current_app.services.get('messaging_integration')
    result = messaging_service.connect(str(user_id), platform, data.get('config') or {})
    if result.is_failure:
        logger.warning(f"Failed to connect {platform} for user {user_id}: {result.error}")
        return jsonify({'success': False, 'error': result.error, 'error_code': result.error_code}), \
            _status_for(result.error_code)

    return jsonify({'success': True, **result.data}), 201
