"""
Service Registry - Central management of the engine's services
Implements dependency injection and lazy loading patterns
"""
from typing import Dict, Any, Callable, List, Optional


class ServiceRegistry:
    """
    Centralized registry for repositories and services.
    Supports dependency injection and lazy loading.
    """

    def __init__(self):
        self._services: Dict[str, Any] = {}
        self._factories: Dict[str, Callable] = {}
        self._dependencies: Dict[str, List[str]] = {}

    def register(self, name: str, service: Any) -> None:
        """
        Register a service instance directly.

        Args:
            name: Service identifier
            service: Service instance
        """
        self._services[name] = service

    def register_factory(self, name: str, factory: Callable,
                         dependencies: Optional[List[str]] = None) -> None:
        """
        Register a factory function for lazy service instantiation.

        Args:
            name: Service identifier
            factory: Callable returning the service; it receives each
                dependency as a keyword argument named after it
            dependencies: Names of services the factory needs
        """
        self._factories[name] = factory
        self._dependencies[name] = list(dependencies or [])

    def get(self, name: str, _resolving: Optional[tuple] = None) -> Any:
        """
        Get a service by name. Lazy loads if factory is registered.

        Args:
            name: Service identifier

        Returns:
            Service instance

        Raises:
            ValueError: If service is not registered
            RuntimeError: If the dependency graph has a cycle
        """
        # Return existing service if already instantiated
        if name in self._services:
            return self._services[name]

        if name not in self._factories:
            raise ValueError(f"Service '{name}' is not registered")

        resolving = (_resolving or ()) + (name,)
        kwargs = {}
        for dependency in self._dependencies[name]:
            if dependency in resolving:
                raise RuntimeError(f"Circular dependency: {' -> '.join(resolving + (dependency,))}")
            kwargs[dependency] = self.get(dependency, resolving)

        self._services[name] = self._factories[name](**kwargs)
        return self._services[name]

    def has(self, name: str) -> bool:
        return name in self._services or name in self._factories

    def validate_dependencies(self) -> List[str]:
        """
        Check that every declared dependency is registered.

        Returns:
            One message per missing dependency
        """
        errors = []
        for name, dependencies in self._dependencies.items():
            for dependency in dependencies:
                if not self.has(dependency):
                    errors.append(f"'{name}' depends on unregistered service '{dependency}'")
        return errors

    def reset(self) -> None:
        """
        Clear all registered services and factories.
        Useful for testing.
        """
        self._services.clear()
        self._factories.clear()
        self._dependencies.clear()

    def reset_service(self, name: str) -> None:
        """Forget an instance so the next get re-creates it from its factory."""
        if name in self._services and name in self._factories:
            del self._services[name]

    def list_services(self) -> list:
        all_services = set(self._services.keys()) | set(self._factories.keys())
        return sorted(list(all_services))
