"""
Tests for the lazy-loading service registry
"""

import pytest
from unittest.mock import Mock

from services.service_registry import ServiceLifecycle, ServiceRegistry


class TestServiceRegistry:
    """Test suite for service registry"""

    @pytest.fixture
    def registry(self):
        """Create a fresh registry instance"""
        return ServiceRegistry()

    def test_register_service_instance(self, registry):
        service_instance = Mock()
        registry.register('gateway_transport', service=service_instance)

        assert registry.get('gateway_transport') is service_instance

    def test_register_requires_instance_or_factory(self, registry):
        with pytest.raises(ValueError):
            registry.register('empty')

    def test_factory_is_lazy_and_singleton(self, registry):
        factory = Mock(return_value='scheduler')
        registry.register_singleton('send_time_scheduler', factory)

        factory.assert_not_called()
        assert registry.get('send_time_scheduler') == 'scheduler'
        assert registry.get('send_time_scheduler') == 'scheduler'
        factory.assert_called_once()

    def test_transient_lifecycle(self, registry):
        counter = {'value': 0}

        def factory():
            counter['value'] += 1
            return counter['value']

        registry.register_factory('transient', factory, lifecycle=ServiceLifecycle.TRANSIENT)

        assert registry.get('transient') == 1
        assert registry.get('transient') == 2

    def test_dependencies_passed_as_keyword_arguments(self, registry):
        registry.register('db_session', service='session')
        registry.register_singleton(
            'campaign_repository',
            lambda db_session: {'session': db_session},
            dependencies=['db_session'],
        )

        assert registry.get('campaign_repository') == {'session': 'session'}

    def test_unregistered_service_raises(self, registry):
        with pytest.raises(ValueError, match="not registered"):
            registry.get('missing')

    def test_circular_dependency_detected(self, registry):
        registry.register_singleton('a', lambda b: 'a', dependencies=['b'])
        registry.register_singleton('b', lambda a: 'b', dependencies=['a'])

        with pytest.raises(RuntimeError, match="Circular dependency detected"):
            registry.get('a')

    def test_override_replaces_registered_factory(self, registry):
        registry.register_singleton('gateway_transport', lambda: 'real')
        registry.register('gateway_transport', service='fake')

        assert registry.get('gateway_transport') == 'fake'

    def test_validate_dependencies(self, registry):
        registry.register_singleton('orchestrator', lambda gateway_client: None,
                                    dependencies=['gateway_client'])

        assert registry.validate_dependencies() == [
            "Service 'orchestrator' depends on unregistered service 'gateway_client'"
        ]

    def test_initialization_order(self, registry):
        registry.register_singleton('c', lambda a, b: None, dependencies=['a', 'b'])
        registry.register_singleton('b', lambda a: None, dependencies=['a'])
        registry.register_singleton('a', lambda: None)

        order = registry.get_initialization_order()

        assert order.index('a') < order.index('b') < order.index('c')


def test_application_registry_resolves_every_service(app):
    """Every service the app registers can be built"""
    for name in app.services.get_initialization_order():
        assert app.services.get(name) is not None
