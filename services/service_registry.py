"""
Service Registry with lazy loading

Factories are registered with the names of the services they need; the
registry builds each service on first use, injecting its dependencies by
keyword. Singletons live for the application, scoped services for one scope
id, transient services are rebuilt on every lookup.
"""
from typing import Dict, Any, Callable, Optional, Set, List
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle options"""
    SINGLETON = "singleton"
    TRANSIENT = "transient"
    SCOPED = "scoped"


class ServiceDescriptor:
    """One registration: how to build a service and what it needs"""

    def __init__(self, name: str, factory: Optional[Callable] = None, instance: Optional[Any] = None,
                 lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                 dependencies: Optional[List[str]] = None):
        self.name = name
        self.factory = factory
        self.instance = instance
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.lock = threading.Lock()


class ServiceRegistry:
    """
    Lazy, dependency-injecting service registry attached to the app as
    ``app.services``.

    Thread-safe singleton creation; circular dependencies raise RuntimeError
    at lookup time and in get_initialization_order().
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._scoped_instances: Dict[str, Dict[str, Any]] = {}
        self._thread_local = threading.local()
        self._lock = threading.Lock()

    def register(self, name: str, service: Any = None, factory: Callable = None,
                 lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                 dependencies: Optional[List[str]] = None) -> None:
        """
        Register a ready instance or a factory.

        Args:
            name: Service identifier
            service: Pre-built instance
            factory: Callable taking the dependencies as keyword arguments
            lifecycle: Service lifecycle type
            dependencies: Names of the services the factory needs
        """
        if service is None and factory is None:
            raise ValueError(f"Either service instance or factory must be provided for '{name}'")

        descriptor = ServiceDescriptor(name, factory=factory, instance=service, lifecycle=lifecycle,
                                       dependencies=dependencies)
        with self._lock:
            self._descriptors[name] = descriptor

    def register_factory(self, name: str, factory: Callable,
                         lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                         dependencies: Optional[List[str]] = None) -> None:
        self.register(name, factory=factory, lifecycle=lifecycle, dependencies=dependencies)

    def _stack(self) -> List[str]:
        if not hasattr(self._thread_local, 'initialization_stack'):
            self._thread_local.initialization_stack = []
        return self._thread_local.initialization_stack

    def get(self, name: str, scope_id: Optional[str] = None) -> Any:
        """
        Resolve a service, building it and its dependencies if needed.

        Raises:
            ValueError: If the service is not registered
            RuntimeError: If a circular dependency is detected
        """
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise ValueError(f"Service '{name}' is not registered")

        stack = self._stack()
        if name in stack:
            cycle = " -> ".join(stack + [name])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        if descriptor.lifecycle == ServiceLifecycle.SINGLETON:
            return self._get_singleton(descriptor)
        if descriptor.lifecycle == ServiceLifecycle.TRANSIENT:
            return self._create_instance(descriptor)
        return self._get_scoped(descriptor, scope_id or "default")

    def _get_singleton(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.instance is not None:
            return descriptor.instance
        with descriptor.lock:
            # Double-check after acquiring the lock
            if descriptor.instance is None:
                descriptor.instance = self._create_instance(descriptor)
            return descriptor.instance

    def _get_scoped(self, descriptor: ServiceDescriptor, scope_id: str) -> Any:
        with self._lock:
            scope = self._scoped_instances.setdefault(scope_id, {})
            if descriptor.name not in scope:
                scope[descriptor.name] = self._create_instance(descriptor)
            return scope[descriptor.name]

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.factory is None:
            raise ValueError(f"No factory registered for '{descriptor.name}'")

        stack = self._stack()
        stack.append(descriptor.name)
        try:
            deps = {dep: self.get(dep) for dep in descriptor.dependencies}
            instance = descriptor.factory(**deps)
            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            stack.pop()

    def reset_service(self, name: str) -> None:
        """Drop a built instance so the next get() rebuilds it"""
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            return
        with descriptor.lock:
            if descriptor.factory is not None:
                descriptor.instance = None
        with self._lock:
            for scope in self._scoped_instances.values():
                scope.pop(name, None)

    def clear_scope(self, scope_id: str) -> None:
        with self._lock:
            self._scoped_instances.pop(scope_id, None)

    def list_services(self) -> List[str]:
        return sorted(self._descriptors)

    def validate_dependencies(self) -> List[str]:
        """Names of dependencies that are not registered, as error strings"""
        return [
            f"Service '{name}' depends on unregistered service '{dep}'"
            for name, descriptor in self._descriptors.items()
            for dep in descriptor.dependencies
            if dep not in self._descriptors
        ]

    def get_initialization_order(self) -> List[str]:
        """
        Topological order of all services.

        Raises:
            RuntimeError: If a circular dependency exists
        """
        graph = {name: list(d.dependencies) for name, d in self._descriptors.items()}
        visited: Set[str] = set()
        order: List[str] = []

        def visit(node: str, path: List[str]):
            if node in path:
                raise RuntimeError(f"Circular dependency detected: {' -> '.join(path + [node])}")
            if node in visited:
                return
            for dep in graph.get(node, []):
                visit(dep, path + [node])
            visited.add(node)
            order.append(node)

        for name in graph:
            visit(name, [])
        return order

    def warmup(self, services: List[str]) -> None:
        """Build the named services (and their dependencies) up front"""
        for name in self.get_initialization_order():
            if name in services:
                logger.info(f"Warming up service: {name}")
                self.get(name)


def create_service_registry() -> ServiceRegistry:
    return ServiceRegistry()
