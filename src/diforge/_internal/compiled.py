from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from typing import Any, Final, Generic, TypeVar

from diforge._internal.definitions import ServiceId
from diforge._internal.lock_mode import LockMode
from diforge._internal.references import (
    Binding,
    CollectionBinding,
    DeferredBinding,
    InlineBinding,
    ReferenceResolver,
    ServiceBinding,
    ServicePlan,
    ValueBinding,
)
from diforge._internal.registry import DefinitionRegistry
from diforge._internal.validator import build_edges, strongly_connected_components
from diforge.exceptions import AccessError, CyclicServiceGraphError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING_INSTANCE: Final[Any] = object()
_IN_PROGRESS: Final[int] = -1


class Deferred(Generic[T]):
    """Handle to a service that is constructed on first use.

    Lazy references are injected as ``Deferred`` handles, which is what
    allows lazy dependency cycles. Call ``get()`` (or the handle itself) to
    obtain the instance. Shared services yield the same instance every time;
    non-shared services yield a fresh one per call.

    Examples:
        .. code-block:: python

            class Mailer:
                def __init__(self, transport: Deferred[Transport]) -> None:
                    self._transport = transport

                def send(self, message: str) -> None:
                    self._transport.get().send(message)

    """

    __slots__ = ("_container", "_service_id")

    def __init__(self, container: CompiledContainer, service_id: ServiceId) -> None:
        self._container = container
        self._service_id = service_id

    @property
    def service_id(self) -> ServiceId:
        return self._service_id

    def get(self) -> T:
        return self._container._resolve(self._service_id)

    def __call__(self) -> T:
        return self.get()

    def __repr__(self) -> str:
        return f"Deferred({self._service_id!r})"


class CompiledContainer:
    """Immutable service container produced by ``ContainerBuilder.compile``.

    Every public service and public alias can be fetched with ``get``.
    Shared services are constructed once, on first request, and memoized;
    non-shared services are constructed on every request. Dependencies are
    constructed in an order computed once per service, deepest chains first.

    The container is safe to use from several threads. With
    ``LockMode.THREAD`` each shared service is guarded by a ``threading.RLock``
    so concurrent first requests construct exactly one instance. Shared
    services on one lazy dependency cycle share a single lock.
    """

    def __init__(
        self,
        graph: DefinitionRegistry,
        *,
        lock_mode: LockMode = LockMode.THREAD,
        private_ids: Iterable[ServiceId] = (),
    ) -> None:
        """Freeze ``graph`` into a container.

        Args:
            graph: A definition graph that went through the full compiler pipeline.
            lock_mode: Locking strategy for shared-instance memoization.
            private_ids: Identifiers of private services removed during compilation,
                so that fetching them reports ``AccessError`` instead of ``NotFoundError``.

        """
        resolver = ReferenceResolver(graph)
        self._plans: dict[ServiceId, ServicePlan] = {
            definition.id: resolver.plan(definition) for definition in graph.definitions()
        }
        self._aliases: dict[ServiceId, ServiceId] = {
            alias.id: graph.resolve_alias_strict(alias.id) for alias in graph.aliases()
        }
        self._private_ids = frozenset(private_ids) | {
            service_id for service_id, plan in self._plans.items() if not plan.public
        }
        self._graph = graph.copy()
        self._lock_mode = lock_mode

        self._heights = self._compute_heights()
        self._orders: dict[ServiceId, tuple[ServiceId, ...]] = {
            service_id: self._compute_order(service_id) for service_id in self._plans
        }

        self._instances: dict[ServiceId, Any] = {}
        self._locks: dict[ServiceId, threading.RLock] = {}
        if lock_mode is LockMode.THREAD:
            self._locks = self._build_locks(graph)
        self._local = threading.local()

    # region Lookup
    def get(self, service_id: ServiceId) -> Any:
        """Return the service registered under ``service_id`` or a public alias.

        Args:
            service_id: Identifier of a public service or alias.

        Returns:
            The memoized instance for shared services, a new one otherwise.

        Raises:
            AccessError: If the service is private.
            NotFoundError: If nothing is registered under ``service_id``.
            CyclicServiceGraphError: If a constructor eagerly uses a lazy
                dependency that is still being constructed.

        """
        return self._resolve(self._public_target(service_id))

    def has(self, service_id: ServiceId) -> bool:
        """Return whether ``service_id`` can be fetched with ``get``."""
        return service_id in self._aliases or (
            service_id in self._plans and service_id not in self._private_ids
        )

    def __contains__(self, service_id: object) -> bool:
        return isinstance(service_id, str) and self.has(service_id)

    def service_ids(self) -> list[ServiceId]:
        """Return every identifier accepted by ``get``, sorted."""
        public = [service_id for service_id in self._plans if service_id not in self._private_ids]
        return sorted([*public, *self._aliases])

    def resolution_order(self, service_id: ServiceId) -> tuple[ServiceId, ...]:
        """Return the construction order of ``service_id`` and its eager dependencies.

        The requested service comes last. Deeper dependency chains are built
        first; siblings of equal depth follow argument order. Lazy
        dependencies and inlined services are not listed.

        Raises:
            AccessError: If the service is private.
            NotFoundError: If nothing is registered under ``service_id``.

        """
        return self._order(self._public_target(service_id))

    @property
    def definitions(self) -> DefinitionRegistry:
        """Return a copy of the pruned definition graph, ready to be compiled again."""
        return self._graph.copy()

    @property
    def lock_mode(self) -> LockMode:
        return self._lock_mode

    def __iter__(self) -> Iterator[ServiceId]:
        return iter(self.service_ids())

    def __len__(self) -> int:
        return len(self.service_ids())

    def __repr__(self) -> str:
        return f"CompiledContainer(services={len(self._plans)}, aliases={len(self._aliases)})"

    def _public_target(self, service_id: ServiceId) -> ServiceId:
        target = self._aliases.get(service_id)
        if target is not None:
            return target
        if service_id in self._private_ids:
            raise AccessError(service_id)
        if service_id not in self._plans:
            raise NotFoundError(service_id, known=self.service_ids())
        return service_id

    # endregion Lookup

    # region Construction
    def _resolve(self, service_id: ServiceId, *, prewarm: bool = True) -> Any:
        plan = self._plans[service_id]
        if not plan.shared:
            if prewarm:
                self._prewarm(service_id)
            return self._construct(plan)

        instance = self._instances.get(service_id, _MISSING_INSTANCE)
        if instance is not _MISSING_INSTANCE:
            return instance

        if prewarm:
            self._prewarm(service_id)
        lock = self._locks.get(service_id)
        if lock is None:
            return self._construct_shared(plan)
        with lock:
            # Double-check: another thread may have finished while we waited
            instance = self._instances.get(service_id, _MISSING_INSTANCE)
            if instance is not _MISSING_INSTANCE:
                return instance
            return self._construct_shared(plan)

    def _prewarm(self, service_id: ServiceId) -> None:
        # dependencies come after their own dependencies, so each is ready to build
        for dependency_id in self._order(service_id)[:-1]:
            if self._plans[dependency_id].shared and dependency_id not in self._instances:
                self._resolve(dependency_id, prewarm=False)

    def _build_locks(self, graph: DefinitionRegistry) -> dict[ServiceId, threading.RLock]:
        # services on one lazy dependency cycle share a lock, so two threads never
        # hold parts of the same cycle while waiting for each other
        component_of = strongly_connected_components(build_edges(graph))
        component_locks: dict[int, threading.RLock] = {}
        locks: dict[ServiceId, threading.RLock] = {}
        for service_id, plan in self._plans.items():
            if not plan.shared:
                continue
            component = component_of[service_id]
            if component not in component_locks:
                component_locks[component] = threading.RLock()
            locks[service_id] = component_locks[component]
        return locks

    def _construct_shared(self, plan: ServicePlan) -> Any:
        instance = self._construct(plan)
        self._instances[plan.service_id] = instance
        return instance

    def _construct(self, plan: ServicePlan) -> Any:
        stack = self._construction_stack()
        if plan.service_id in stack:
            cycle = [*stack[stack.index(plan.service_id) :], plan.service_id]
            raise CyclicServiceGraphError(cycle)

        stack.append(plan.service_id)
        try:
            arguments = [self._evaluate(binding) for binding in plan.arguments]
            keyword_arguments = {
                name: self._evaluate(binding) for name, binding in plan.keyword_arguments
            }
            logger.debug("Constructing service '%s'", plan.service_id)
            return plan.factory(*arguments, **keyword_arguments)
        finally:
            stack.pop()

    def _evaluate(self, binding: Binding) -> Any:
        if isinstance(binding, ValueBinding):
            return binding.value
        if isinstance(binding, ServiceBinding):
            return self._resolve(binding.service_id)
        if isinstance(binding, DeferredBinding):
            return Deferred(self, binding.service_id)
        if isinstance(binding, CollectionBinding):
            return [self._evaluate(item) for item in binding.items]
        if isinstance(binding, InlineBinding):
            return self._construct(binding.plan)
        msg = f"Unsupported binding {binding!r}."
        raise TypeError(msg)

    def _construction_stack(self) -> list[ServiceId]:
        stack: list[ServiceId] | None = getattr(self._local, "stack", None)
        if stack is None:
            stack = []
            self._local.stack = stack
        return stack

    # endregion Construction

    # region Ordering
    def _compute_heights(self) -> dict[ServiceId, int]:
        """Return the length of the longest eager dependency chain below each service."""
        heights: dict[ServiceId, int] = {}
        for root in self._plans:
            if root in heights:
                continue
            heights[root] = _IN_PROGRESS
            work: list[tuple[ServiceId, int]] = [(root, 0)]
            while work:
                service_id, next_dependency = work.pop()
                dependencies = self._plans[service_id].dependencies
                if next_dependency < len(dependencies):
                    work.append((service_id, next_dependency + 1))
                    dependency_id = dependencies[next_dependency]
                    if heights.get(dependency_id) == _IN_PROGRESS:
                        # only reachable when a pass after validation added an eager cycle
                        raise CyclicServiceGraphError([service_id, dependency_id, service_id])
                    if dependency_id not in heights:
                        heights[dependency_id] = _IN_PROGRESS
                        work.append((dependency_id, 0))
                    continue
                heights[service_id] = 1 + max(
                    (heights[dependency_id] for dependency_id in dependencies),
                    default=-1,
                )
        return heights

    def _order(self, service_id: ServiceId) -> tuple[ServiceId, ...]:
        return self._orders[service_id]

    def _compute_order(self, service_id: ServiceId) -> tuple[ServiceId, ...]:
        order: list[ServiceId] = []
        visited = {service_id}
        work: list[tuple[ServiceId, list[ServiceId]]] = [
            (service_id, self._dependencies_by_height(service_id)),
        ]
        while work:
            current, pending = work[-1]
            if pending:
                dependency_id = pending.pop(0)
                if dependency_id not in visited:
                    visited.add(dependency_id)
                    work.append((dependency_id, self._dependencies_by_height(dependency_id)))
                continue
            work.pop()
            order.append(current)
        return tuple(order)

    def _dependencies_by_height(self, service_id: ServiceId) -> list[ServiceId]:
        # sorted() is stable, so equal heights keep argument order
        return sorted(
            self._plans[service_id].dependencies,
            key=lambda dependency_id: -self._heights[dependency_id],
        )

    # endregion Ordering


__all__ = ["CompiledContainer", "Deferred"]
