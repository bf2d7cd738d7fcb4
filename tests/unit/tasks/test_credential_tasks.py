"""
Tests for the credential refresh task
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from tasks.credential_tasks import refresh_expiring_credentials


@pytest.fixture
def vault():
    return Mock()


@pytest.fixture
def token_client():
    return Mock()


@pytest.fixture
def patched_services(app, mocker, vault, token_client):
    registry = {'credential_vault': vault, 'oauth_token_client': token_client}
    return mocker.patch.object(app.services, 'get', side_effect=registry.__getitem__)


class TestRefreshExpiringCredentials:

    def test_refreshes_each_expiring_credential(self, patched_services, vault, token_client):
        vault.get_expired_credentials.return_value = [
            Mock(user_id='user-1', provider='google_ads'),
            Mock(user_id='user-2', provider='meta_insights'),
        ]
        vault.ensure_fresh.side_effect = [{'access_token': 'new'}, None]

        summary = refresh_expiring_credentials.run(within_minutes=15)

        assert summary == {
            'checked': 2,
            'refreshed': 1,
            'failed': [{'user_id': 'user-2', 'provider': 'meta_insights'}],
        }
        vault.get_expired_credentials.assert_called_once_with(within=timedelta(minutes=15))
        vault.ensure_fresh.assert_any_call('user-1', 'google_ads', token_client, skew=timedelta(minutes=15))

    def test_nothing_expiring(self, patched_services, vault):
        vault.get_expired_credentials.return_value = []

        summary = refresh_expiring_credentials.run()

        assert summary == {'checked': 0, 'refreshed': 0, 'failed': []}
        vault.ensure_fresh.assert_not_called()
