from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from diforge._internal.definitions import (
    Argument,
    Autowire,
    InlinedService,
    LiteralValue,
    ParameterReference,
    ServiceCollection,
    ServiceDefinition,
    ServiceId,
    ServiceReference,
    TaggedCollection,
)
from diforge._internal.registry import DefinitionRegistry
from diforge.exceptions import CompilationError, UnresolvedReferenceError


@dataclass(frozen=True, slots=True)
class ValueBinding:
    """A value passed as is: literals and absent optional references."""

    value: Any


@dataclass(frozen=True, slots=True)
class ServiceBinding:
    """An eager dependency on another compiled service."""

    service_id: ServiceId


@dataclass(frozen=True, slots=True)
class DeferredBinding:
    """A lazy dependency, injected as a ``Deferred`` handle."""

    service_id: ServiceId


@dataclass(frozen=True, slots=True)
class CollectionBinding:
    """An ordered list of bindings, baked from a tagged collection."""

    tag: str
    items: tuple[Binding, ...]


@dataclass(frozen=True, slots=True)
class InlineBinding:
    """A private service constructed in place for its only consumer."""

    plan: ServicePlan


Binding: TypeAlias = (
    ValueBinding | ServiceBinding | DeferredBinding | CollectionBinding | InlineBinding
)


@dataclass(frozen=True, slots=True)
class ServicePlan:
    """Everything needed to construct one service at run time."""

    service_id: ServiceId
    """Identifier of the service."""
    factory: Any
    """Callable invoked with the evaluated bindings."""
    arguments: tuple[Binding, ...] = ()
    """Positional bindings, in call order."""
    keyword_arguments: tuple[tuple[str, Binding], ...] = ()
    """Keyword bindings, in declaration order."""
    shared: bool = True
    """Whether the instance is memoized by the container."""
    public: bool = True
    """Whether the service can be fetched from the container."""
    dependencies: tuple[ServiceId, ...] = field(default=())
    """Eager service dependencies, in argument order, without duplicates."""

    def bindings(self) -> Iterator[Binding]:
        yield from self.arguments
        for _, binding in self.keyword_arguments:
            yield binding


def iter_eager_dependencies(
    bindings: Iterator[Binding] | tuple[Binding, ...],
) -> Iterator[ServiceId]:
    """Yield eager service dependencies, descending into collections and inlined plans."""
    for binding in bindings:
        if isinstance(binding, ServiceBinding):
            yield binding.service_id
        elif isinstance(binding, CollectionBinding):
            yield from iter_eager_dependencies(binding.items)
        elif isinstance(binding, InlineBinding):
            yield from iter_eager_dependencies(binding.plan.bindings())


class ReferenceResolver:
    """Turn the arguments of a compiled graph into run-time bindings.

    The graph must have gone through the whole pipeline: parameter
    references, tagged collections and autowire slots are expected to be
    gone, and aliases to be resolved.
    """

    def __init__(self, graph: DefinitionRegistry) -> None:
        self._graph = graph

    def plan(self, definition: ServiceDefinition) -> ServicePlan:
        """Build the construction plan of ``definition``.

        Raises:
            UnresolvedReferenceError: If a required reference has no target.
            CompilationError: If an argument was left unresolved by the pipeline.

        """
        if definition.factory is None:
            msg = f"Service '{definition.id}' has no factory."
            raise CompilationError(msg, service_id=definition.id)
        arguments = tuple(self.bind(definition, argument) for argument in definition.arguments)
        keyword_arguments = tuple(
            (name, self.bind(definition, argument))
            for name, argument in definition.keyword_arguments.items()
        )
        bindings = (*arguments, *(binding for _, binding in keyword_arguments))
        dependencies = tuple(dict.fromkeys(iter_eager_dependencies(bindings)))
        return ServicePlan(
            service_id=definition.id,
            factory=definition.factory,
            arguments=arguments,
            keyword_arguments=keyword_arguments,
            shared=definition.shared,
            public=definition.public,
            dependencies=dependencies,
        )

    def bind(self, consumer: ServiceDefinition, argument: Argument) -> Binding:
        if isinstance(argument, LiteralValue):
            return ValueBinding(argument.value)
        if isinstance(argument, ServiceReference):
            return self._bind_reference(consumer, argument)
        if isinstance(argument, ServiceCollection):
            return CollectionBinding(
                argument.tag,
                tuple(
                    self._bind_reference(consumer, reference) for reference in argument.references
                ),
            )
        if isinstance(argument, InlinedService):
            return InlineBinding(self.plan(argument.definition))
        if isinstance(argument, ParameterReference | TaggedCollection | Autowire):
            msg = (
                f"Argument {argument!r} of service '{consumer.id}' was not resolved during "
                "compilation."
            )
            raise CompilationError(msg, service_id=consumer.id)
        msg = f"Unsupported argument {argument!r} in service '{consumer.id}'."
        raise CompilationError(msg, service_id=consumer.id)

    def _bind_reference(self, consumer: ServiceDefinition, reference: ServiceReference) -> Binding:
        target_id = self._graph.resolve_alias(reference.id)
        target = self._graph.find(target_id)
        if target is None:
            if reference.optional:
                return ValueBinding(None)
            msg = f"Service '{consumer.id}' depends on missing service '{reference.id}'."
            raise UnresolvedReferenceError(msg, reference=reference.id, service_id=consumer.id)
        if reference.lazy or target.lazy:
            return DeferredBinding(target_id)
        return ServiceBinding(target_id)


__all__ = [
    "Binding",
    "CollectionBinding",
    "DeferredBinding",
    "InlineBinding",
    "ReferenceResolver",
    "ServiceBinding",
    "ServicePlan",
    "ValueBinding",
    "iter_eager_dependencies",
]
