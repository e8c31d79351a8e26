from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from typing_extensions import Self

from diforge._internal.compiled import CompiledContainer
from diforge._internal.definitions import (
    Capability,
    InlinedService,
    ServiceDefinition,
    ServiceId,
    Tag,
    TagAttributeValue,
)
from diforge._internal.lock_mode import LockMode
from diforge._internal.passes import builtin_passes
from diforge._internal.pipeline import CompilerPass, PassCallable, PassPhase, PassPipeline
from diforge._internal.providers import ServiceProvider
from diforge._internal.registry import DefinitionRegistry
from diforge._internal.tags import TagIndex
from diforge.exceptions import InvalidDefinitionError

logger = logging.getLogger(__name__)


class ContainerBuilder:
    """Collect definitions and extensions, then compile them into a container.

    The builder owns a ``DefinitionRegistry``, the autoconfiguration rules,
    the compiler pass pipeline (pre-populated with the built-in passes) and
    the registered service providers. ``compile`` never mutates the registry:
    passes run against a private copy, so the builder can be compiled again
    after further changes.
    """

    def __init__(
        self,
        registry: DefinitionRegistry | None = None,
        *,
        lock_mode: LockMode = LockMode.THREAD,
        autowire_by_default: bool = False,
    ) -> None:
        """Initialize a builder.

        Args:
            registry: Registry to start from, for example the ``definitions`` of
                a previously compiled container. A new empty registry by default.
            lock_mode: Locking strategy baked into compiled containers.
            autowire_by_default: Value of ``autowire`` for definitions
                registered through ``register`` without an explicit choice.

        Examples:
            .. code-block:: python

                builder = ContainerBuilder()

                single_threaded = ContainerBuilder(lock_mode=LockMode.NONE)

                recompiled = ContainerBuilder(container.definitions).compile()

        """
        if not isinstance(lock_mode, LockMode):
            msg = f"lock_mode must be a LockMode, got {lock_mode!r}."
            raise InvalidDefinitionError(msg)
        self._registry = registry if registry is not None else DefinitionRegistry()
        self._lock_mode = lock_mode
        self._autowire_by_default = autowire_by_default

        self._tag_index = TagIndex()
        self._pipeline = PassPipeline()
        for compiler_pass, phase, priority in builtin_passes(self._tag_index):
            self._pipeline.add(compiler_pass, phase, priority)

        self._providers: list[ServiceProvider] = []
        self._booted_provider_count = 0

    @property
    def registry(self) -> DefinitionRegistry:
        return self._registry

    @property
    def pipeline(self) -> PassPipeline:
        return self._pipeline

    @property
    def tag_index(self) -> TagIndex:
        return self._tag_index

    @property
    def lock_mode(self) -> LockMode:
        return self._lock_mode

    # region Registration Methods
    def register(
        self,
        service_id: ServiceId,
        factory: Callable[..., Any] | None = None,
        *,
        arguments: Iterable[Any] = (),
        keyword_arguments: Mapping[str, Any] | None = None,
        tags: Iterable[Tag | str] = (),
        public: bool = True,
        shared: bool = True,
        abstract: bool = False,
        lazy: bool = False,
        autowire: bool | None = None,
        capabilities: Iterable[Capability] = (),
        default_for: Iterable[Capability] = (),
        parent: ServiceId | None = None,
    ) -> ServiceDefinition:
        """Create a definition and add it to the registry.

        Plain literals in ``arguments`` and ``keyword_arguments`` are wrapped in
        ``LiteralValue`` and plain strings in ``tags`` become attribute-less
        tags. Registering an existing identifier replaces it.

        Args:
            service_id: Unique identifier of the service.
            factory: Class or callable that builds the service. May be omitted
                for abstract templates and for children inheriting it from
                ``parent``.
            arguments: Positional arguments, in call order.
            keyword_arguments: Keyword arguments, by parameter name.
            tags: Tags to attach.
            public: Whether the service can be fetched from the container.
            shared: Whether one instance is reused for the container lifetime.
            abstract: Register a template that is never instantiated.
            lazy: Inject ``Deferred`` handles instead of instances.
            autowire: Fill unspecified parameters by capability. Defaults to
                the builder's ``autowire_by_default``.
            capabilities: Capability tokens provided in addition to the
                factory's class hierarchy.
            default_for: Capabilities for which this service wins ambiguous
                autowiring.
            parent: Identifier of an abstract template to extend.

        Returns:
            The stored definition.

        Raises:
            InvalidDefinitionError: If any of the inputs is invalid.

        Examples:
            .. code-block:: python

                builder.register("request_stack", RequestStack)
                builder.register(
                    "current_route_match",
                    CurrentRouteMatch,
                    arguments=[ServiceReference("request_stack")],
                    tags=[Tag("event_subscriber", {"priority": 10})],
                )

        """
        definition = ServiceDefinition(
            id=service_id,
            factory=factory,
            arguments=list(arguments),
            keyword_arguments=dict(keyword_arguments or {}),
            tags=list(tags),
            public=public,
            shared=shared,
            abstract=abstract,
            lazy=lazy,
            autowire=self._autowire_by_default if autowire is None else autowire,
            capabilities=tuple(capabilities),
            default_for=tuple(default_for),
            parent=parent,
        )
        return self._registry.add(definition)

    def add(self, definition: ServiceDefinition) -> ServiceDefinition:
        """Add a prebuilt definition, replacing any previous one with the same id."""
        return self._registry.add(definition)

    def set_alias(self, alias_id: ServiceId, target: ServiceId, *, public: bool = True) -> Self:
        self._registry.set_alias(alias_id, target, public=public)
        return self

    def set_parameter(self, name: str, value: Any) -> Self:
        self._registry.set_parameter(name, value)
        return self

    def register_for_autoconfiguration(
        self,
        capability: Capability,
        tag_name: str,
        **attributes: TagAttributeValue,
    ) -> Self:
        """Tag every service providing ``capability`` with ``tag_name``.

        Explicitly declared tags of the same name win; ``attributes`` only fill
        keys they lack.
        """
        self._tag_index.register_for_autoconfiguration(capability, tag_name, **attributes)
        return self

    def add_compiler_pass(
        self,
        compiler_pass: CompilerPass | PassCallable,
        phase: PassPhase = PassPhase.BEFORE_OPTIMIZATION,
        priority: int = 0,
    ) -> Self:
        """Schedule a compiler pass.

        Within a phase, passes run by descending ``priority``; passes with the
        same priority run in the order they were added. Built-in passes use
        priorities between -100 and 100.

        Raises:
            InvalidDefinitionError: If the pass is neither a ``CompilerPass``
                nor a callable, or ``phase`` is not a ``PassPhase``.

        """
        self._pipeline.add(compiler_pass, phase, priority)
        return self

    def add_provider(self, provider: ServiceProvider) -> Self:
        """Register a service provider, booted on the next ``compile``."""
        if not isinstance(provider, ServiceProvider):
            msg = f"Expected a ServiceProvider, got {type(provider).__name__}."
            raise InvalidDefinitionError(msg)
        self._providers.append(provider)
        return self

    # endregion Registration Methods

    def compile(self) -> CompiledContainer:
        """Run the compiler pipeline and freeze the result.

        Providers added since the last compilation are booted first. The
        registry itself is left untouched.

        Returns:
            A new immutable container.

        Raises:
            CompilationError: If any pass fails. No container is produced.

        """
        self._boot_providers()

        graph = self._registry.copy()
        definition_count = len(graph)
        private_ids = [definition.id for definition in graph.definitions() if not definition.public]
        private_ids.extend(alias.id for alias in graph.aliases() if not alias.public)

        graph = self._pipeline.run(graph)
        container = CompiledContainer(graph, lock_mode=self._lock_mode, private_ids=private_ids)

        logger.info(
            (
                "Compiled container: definitions=%d kept=%d inlined=%d aliases=%d "
                "passes=%d lock_mode=%s"
            ),
            definition_count,
            len(graph),
            _count_inlined(graph.definitions()),
            len(graph.aliases()),
            len(self._pipeline),
            self._lock_mode.value,
        )
        return container

    def _boot_providers(self) -> None:
        # providers may add further providers while registering
        while self._booted_provider_count < len(self._providers):
            pending = self._providers[self._booted_provider_count :]
            self._booted_provider_count = len(self._providers)
            for provider in pending:
                logger.debug("Registering service provider %s", type(provider).__qualname__)
                provider.register(self)
            for provider in pending:
                provider.alter(self)


def _count_inlined(definitions: Iterable[ServiceDefinition]) -> int:
    count = 0
    for definition in definitions:
        for argument in definition.all_arguments():
            if isinstance(argument, InlinedService):
                count += 1 + _count_inlined([argument.definition])
    return count


__all__ = ["ContainerBuilder"]
