# tests/conftest.py
"""
Shared fixtures for the pytest test suite.

Every test function gets its own application with an in-memory database and a
fresh service registry, so nothing cached in a singleton service leaks between
tests. The Gateway is never contacted: the 'gateway_transport' service is
replaced with a FakeTransport and the scheduler runs on a fixed clock.
"""
import os
from datetime import datetime, timezone

import pytest

from app import create_app
from extensions import db
from campaign_database import Campaign
from services.send_time_scheduler import SendTimeScheduler
from tests.fixtures.gateway_fixtures import FakeTransport

# 11:13:45 KST
FIXED_NOW = datetime(2025, 3, 10, 2, 13, 45, tzinfo=timezone.utc)


def create_test_campaign(**kwargs):
    """
    Helper function to create test campaigns with default values.
    Used across multiple test files.
    """
    defaults = {
        'name': 'Spring sale',
        'message_type': 'LMS',
        'title': 'Spring sale',
        'content': '봄맞이 할인 안내',
        'sender_number': '16700000',
        'status_code': 5,
        'status': 'draft',
        'environment': 'sandbox',
        'targeting': {},
        'compiled_filter': {'$and': []},
        'filter_description': '전체 대상',
    }
    defaults.update(kwargs)
    return Campaign(**defaults)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def app(fake_transport):
    """
    A fixture that creates a new Flask application instance for each test,
    with tables created in an in-memory SQLite database.
    """
    os.environ['FLASK_ENV'] = 'testing'

    app = create_app(config_name='testing')
    app.services.register('gateway_transport', service=fake_transport)
    app.services.register('send_time_scheduler', service=SendTimeScheduler(clock=lambda: FIXED_NOW))

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the application's endpoints."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    return db.session


@pytest.fixture
def campaign_factory(db_session):
    """Persist campaigns with sensible defaults: campaign_factory(remote_id='C1', status_code=30)"""
    def make(**kwargs):
        campaign = create_test_campaign(**kwargs)
        db_session.add(campaign)
        db_session.commit()
        return campaign
    return make


@pytest.fixture
def callback_headers(app):
    return {'X-Auth-Key': app.config['GATEWAY_CALLBACK_AUTH_KEY']}
