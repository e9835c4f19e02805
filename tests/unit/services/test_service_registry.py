"""
Tests for ServiceRegistry - dependency injection and lazy loading
"""

import pytest
from unittest.mock import Mock

from services.registry import ServiceRegistry


class TestServiceRegistry:

    @pytest.fixture
    def registry(self):
        return ServiceRegistry()

    def test_register_instance(self, registry):
        service = Mock()
        registry.register('scoring', service)

        assert registry.get('scoring') is service
        assert registry.has('scoring')

    def test_factory_is_lazy_and_cached(self, registry):
        factory = Mock(return_value=object())
        registry.register_factory('scoring', factory)

        factory.assert_not_called()
        first = registry.get('scoring')
        second = registry.get('scoring')

        assert first is second
        factory.assert_called_once_with()

    def test_dependencies_passed_as_keyword_arguments(self, registry):
        session = Mock()
        registry.register('db_session', session)
        registry.register_factory('deal_repository', lambda db_session: ('repo', db_session),
                                  dependencies=['db_session'])

        assert registry.get('deal_repository') == ('repo', session)

    def test_unknown_service(self, registry):
        with pytest.raises(ValueError, match="not registered"):
            registry.get('missing')

    def test_circular_dependency_detected(self, registry):
        registry.register_factory('a', lambda b: b, dependencies=['b'])
        registry.register_factory('b', lambda a: a, dependencies=['a'])

        with pytest.raises(RuntimeError, match='Circular dependency'):
            registry.get('a')

    def test_validate_dependencies(self, registry):
        registry.register_factory('orchestrator', lambda rule_engine: rule_engine,
                                  dependencies=['rule_engine'])

        assert registry.validate_dependencies() == [
            "'orchestrator' depends on unregistered service 'rule_engine'"]

    def test_reset_service_recreates_from_factory(self, registry):
        registry.register_factory('scoring', object)
        first = registry.get('scoring')
        registry.reset_service('scoring')

        assert registry.get('scoring') is not first

    def test_reset_and_list(self, registry):
        registry.register('b', 1)
        registry.register_factory('a', object)
        assert registry.list_services() == ['a', 'b']

        registry.reset()
        assert registry.list_services() == []
