# commands.py

import json

import click
from flask import current_app
from flask.cli import AppGroup, with_appcontext
from extensions import db

campaigns_cli = AppGroup('campaigns', help='Campaign broker maintenance commands')


@campaigns_cli.command('refresh')
@click.argument('campaign_id')
@click.option('--remote-id', default=None,
              help='Gateway id to link when the registration outcome is unknown')
def refresh_campaign(campaign_id, remote_id):
    """Read a campaign from the Gateway and apply its state locally"""
    orchestrator = current_app.services.get('campaign_orchestrator')
    result = orchestrator.refresh_status(campaign_id, remote_id=remote_id)

    if result.is_failure:
        click.echo(f'Refresh failed [{result.error_code}]: {result.error}', err=True)
        raise SystemExit(1)

    campaign = result.data
    click.echo(f"Campaign {campaign['id']} -> {campaign['status']} ({campaign['status_code']})")
    if result.metadata and result.metadata.get('outcome'):
        click.echo(f"Outcome: {result.metadata['outcome']}")


@campaigns_cli.command('show-environment')
@click.option('--env', 'override', default=None, help='Per-call override to resolve against')
def show_environment(override):
    """Show which Gateway environment calls resolve to"""
    resolver = current_app.services.get('gateway_environment')
    resolved = resolver.resolve(override=override)
    click.echo(json.dumps(resolved.describe(), indent=2))


@click.command('init-db')
@with_appcontext
def init_db():
    """Create database tables"""
    db.create_all()
    click.echo('Database tables created.')


def init_app(app):
    """Register commands with the Flask app"""
    app.cli.add_command(campaigns_cli)
    app.cli.add_command(init_db)
