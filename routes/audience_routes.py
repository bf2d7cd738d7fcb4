from flask import Blueprint, request, jsonify, current_app

from logging_config import get_logger

logger = get_logger(__name__)

audience_bp = Blueprint('audience', __name__)


@audience_bp.route('/context', methods=['GET'])
def audience_context():
    """
    Cross-platform AudienceContext for a user.

    Query params:
        user_id: required
        summary: '1' adds a plain-language summary
        refresh: '1' bypasses the context cache
    """
    user_id = request.args.get('user_id')
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400

    aggregator = current_app.services.get('audience_aggregator')
    context = aggregator.build(user_id, use_cache=request.args.get('refresh') != '1')

    payload = context.to_dict()
    if request.args.get('summary') == '1':
        payload['summary'] = aggregator.generate_summary(context)
    return jsonify(payload), 200
