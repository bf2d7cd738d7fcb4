"""
Channel webhook endpoint

One URL per integration: /webhooks/<channel>/<integration_id>. Verification,
parsing and storage happen in WebhookProcessingService; this layer only maps
the outcome to an HTTP response. GET serves subscription handshakes that
expect the challenge echoed as plain text (WhatsApp ``hub.challenge``).
"""

from flask import Blueprint, request, jsonify, current_app
import logging

from services.providers.base import WebhookRequest

logger = logging.getLogger(__name__)

webhook_bp = Blueprint('webhooks', __name__)


@webhook_bp.route('/<channel>/<int:integration_id>', methods=['GET', 'POST'])
def receive_webhook(channel, integration_id):
    webhook_request = WebhookRequest(
        body=request.get_data(cache=True),
        headers=dict(request.headers),
        url=request.url,
        form=request.form.to_dict() if request.mimetype == 'application/x-www-form-urlencoded' else {},
        method=request.method,
        args=request.args.to_dict(),
    )

    webhook_service = current_app.services.get('webhook_processing')
    result = webhook_service.process(channel, integration_id, webhook_request)
    if result.is_failure:
        return jsonify({'error': result.error}), 404

    outcome = result.data
    if outcome.status == 'challenge':
        if request.method == 'GET':
            return outcome.challenge, 200, {'Content-Type': 'text/plain'}
        return jsonify({'challenge': outcome.challenge}), 200
    if outcome.status == 'rejected':
        # No detail for callers that failed verification
        return jsonify({'error': 'Forbidden'}), 403
    if outcome.status == 'error':
        return jsonify({'error': 'Webhook processing failed'}), 500
    return jsonify(outcome.to_dict()), outcome.http_status
