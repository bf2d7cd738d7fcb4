"""
Integration management routes

Listing and disconnecting credentials, plus the OAuth connect flow for
analytics providers. The OAuth ``state`` is kept in the server-side session
between the authorize and callback requests.
"""

import hmac
import logging
import secrets

from flask import Blueprint, request, jsonify, current_app, session

from services.enums import ANALYTICS_PROVIDERS, ProviderType

logger = logging.getLogger(__name__)

integration_bp = Blueprint('integrations', __name__)

_OAUTH_SESSION_KEY = 'oauth_pending'


@integration_bp.route('', methods=['GET'])
def list_integrations():
    user_id = request.args.get('user_id')
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400

    vault = current_app.services.get('credential_vault')
    return jsonify({'integrations': vault.list_integrations(user_id)}), 200


@integration_bp.route('/<provider>', methods=['DELETE'])
def remove_integration(provider):
    """Soft delete; the row stays for audit"""
    user_id = request.args.get('user_id')
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400

    vault = current_app.services.get('credential_vault')
    result = vault.remove(user_id, provider)
    if result.is_failure:
        status = 404 if result.error_code == 'NOT_FOUND' else 500
        return jsonify({'success': False, 'error': result.error}), status

    aggregator = current_app.services.get('audience_aggregator')
    aggregator.invalidate(user_id)
    return jsonify({'success': True}), 200


@integration_bp.route('/<provider>/authorize', methods=['GET'])
def authorize(provider):
    """Return the provider consent URL for an analytics platform"""
    user_id = request.args.get('user_id')
    redirect_uri = request.args.get('redirect_uri')
    if not user_id or not redirect_uri:
        return jsonify({'error': 'user_id and redirect_uri are required'}), 400
    if provider not in ANALYTICS_PROVIDERS:
        return jsonify({'error': f'Unsupported provider: {provider}'}), 404

    state = secrets.token_urlsafe(32)
    token_client = current_app.services.get('oauth_token_client')
    result = token_client.authorization_url(provider, redirect_uri, state)
    if result.is_failure:
        return jsonify({'error': result.error, 'error_code': result.error_code}), 400

    session[_OAUTH_SESSION_KEY] = {
        'state': state,
        'provider': provider,
        'user_id': user_id,
        'redirect_uri': redirect_uri,
    }
    return jsonify({'authorization_url': result.data}), 200


@integration_bp.route('/<provider>/callback', methods=['GET'])
def oauth_callback(provider):
    """Exchange the authorization code and store the tokens"""
    pending = session.pop(_OAUTH_SESSION_KEY, None)
    state = request.args.get('state') or ''
    if not pending or pending['provider'] != provider or not hmac.compare_digest(pending['state'], state):
        logger.warning(f"OAuth callback for {provider} with missing or mismatched state")
        return jsonify({'error': 'Invalid OAuth state'}), 400

    if request.args.get('error'):
        return jsonify({'error': request.args.get('error_description') or request.args['error']}), 400

    token_client = current_app.services.get('oauth_token_client')
    token_result = token_client.exchange_code(provider, request.args.get('code'), pending['redirect_uri'])
    if token_result.is_failure:
        status = 502 if token_result.error_code in ('PROVIDER_UNAVAILABLE', 'PROVIDER_ERROR') else 400
        return jsonify({'error': token_result.error, 'error_code': token_result.error_code}), status

    vault = current_app.services.get('credential_vault')
    store_result = vault.store(pending['user_id'], provider, token_result.data,
                               provider_type=ProviderType.OAUTH.value)
    if store_result.is_failure:
        return jsonify({'error': store_result.error}), 500

    current_app.services.get('audience_aggregator').invalidate(pending['user_id'])
    logger.info(f"Connected {provider} for user {pending['user_id']}")
    return jsonify({'success': True, 'provider': provider, 'integration_id': store_result.data.id}), 201
