"""
Tests for the campaign maintenance CLI commands
"""


class TestRefreshCommand:

    def test_refresh_prints_reconciled_status(self, app, fake_transport, campaign_factory):
        campaign = campaign_factory(remote_id='C100', status_code=20, status='send_ready')
        fake_transport.queue({'id': 'C100', 'state': 30})

        result = app.test_cli_runner().invoke(args=['campaigns', 'refresh', campaign.id])

        assert result.exit_code == 0
        assert f'Campaign {campaign.id} -> running (30)' in result.output
        assert 'Outcome: applied' in result.output

    def test_refresh_unregistered_campaign_fails(self, app, fake_transport, campaign_factory):
        campaign = campaign_factory()

        result = app.test_cli_runner().invoke(args=['campaigns', 'refresh', campaign.id])

        assert result.exit_code == 1
        assert 'STATE_CONFLICT' in result.output
        assert fake_transport.requests == []

    def test_refresh_unknown_campaign_fails(self, app):
        result = app.test_cli_runner().invoke(args=['campaigns', 'refresh', 'missing'])

        assert result.exit_code == 1
        assert 'NOT_FOUND' in result.output


def test_show_environment_never_prints_key(app):
    result = app.test_cli_runner().invoke(args=['campaigns', 'show-environment', '--env', 'production'])

    assert result.exit_code == 0
    assert '"environment": "sandbox"' in result.output
    assert '"base_url": "https://gateway.test"' in result.output
    assert 'sandbox-test-key' not in result.output
