from __future__ import annotations

import inspect
import logging
import types
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any, Union, get_args, get_origin, get_type_hints

from diforge._internal.definitions import (
    Argument,
    Autowire,
    Capability,
    LiteralValue,
    Named,
    ServiceDefinition,
    ServiceId,
    ServiceReference,
)
from diforge._internal.registry import DefinitionRegistry
from diforge.exceptions import (
    AmbiguousCandidateError,
    CompilationError,
    NoCandidateError,
    UnresolvedReferenceError,
)

logger = logging.getLogger(__name__)

_IMPLICIT_FIRST_PARAMETER_NAMES = {"self", "cls"}


@dataclass(frozen=True, slots=True)
class AutowireRequest:
    """What a single argument slot asks for."""

    argument: str
    """Human-readable position, for example ``"#0 ($logger)"``."""
    capability: Capability | None
    name: ServiceId | None
    nullable: bool
    has_default: bool


class CapabilityIndex:
    """Map capability tokens to the identifiers of the definitions providing them."""

    def __init__(self, graph: DefinitionRegistry) -> None:
        self._providers: dict[Any, list[ServiceId]] = {}
        self._defaults: dict[Any, list[ServiceId]] = {}
        for definition in graph.definitions():
            if definition.abstract:
                continue
            for capability in definition.provided_capabilities():
                self._providers.setdefault(_token(capability), []).append(definition.id)
            for capability in definition.default_for:
                self._defaults.setdefault(_token(capability), []).append(definition.id)

    def providers(self, capability: Capability) -> list[ServiceId]:
        return sorted(self._providers.get(_token(capability), ()))

    def defaults(self, capability: Capability) -> list[ServiceId]:
        return sorted(self._defaults.get(_token(capability), ()))


class ParameterInspector:
    """Read the constructor signature of a factory."""

    def inspect(self, definition: ServiceDefinition) -> list[inspect.Parameter]:
        factory = definition.factory
        if factory is None:
            return []
        target, skip_first = self._signature_target(factory)
        try:
            signature = inspect.signature(target)
        except (TypeError, ValueError) as error:
            msg = f"Cannot read the signature of factory {factory!r} of service '{definition.id}'."
            raise CompilationError(msg, service_id=definition.id) from error
        parameters = list(signature.parameters.values())
        if skip_first and parameters and parameters[0].name in _IMPLICIT_FIRST_PARAMETER_NAMES:
            parameters = parameters[1:]
        return [
            parameter
            for parameter in parameters
            if parameter.kind
            not in {inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD}
        ]

    def annotations(self, definition: ServiceDefinition) -> dict[str, Any]:
        factory = definition.factory
        if factory is None:
            return {}
        target, _ = self._signature_target(factory)
        try:
            return get_type_hints(target, include_extras=True)
        except (NameError, TypeError) as error:
            msg = (
                f"Cannot evaluate the type annotations of factory {factory!r} of service "
                f"'{definition.id}': {error}."
            )
            raise CompilationError(msg, service_id=definition.id) from error

    def _signature_target(self, factory: Callable[..., Any]) -> tuple[Callable[..., Any], bool]:
        if isinstance(factory, type):
            return factory.__init__, True
        return factory, False


class AutowireResolver:
    """Fill unspecified constructor arguments by capability matching.

    Resolution is lazy and memoized per definition: ``autowire`` is called
    while walking the graph, so a definition nobody reaches is never inspected.
    Results are written back into the definition as plain service references
    or ``None`` literals.
    """

    def __init__(self, graph: DefinitionRegistry) -> None:
        self._graph = graph
        self._index = CapabilityIndex(graph)
        self._inspector = ParameterInspector()
        self._done: set[ServiceId] = set()

    def autowire(self, definition: ServiceDefinition) -> ServiceDefinition:
        """Resolve every ``Autowire`` slot and, when enabled, every unspecified parameter.

        Raises:
            NoCandidateError: If a required slot has no candidate.
            AmbiguousCandidateError: If a slot has several candidates and no default.
            UnresolvedReferenceError: If a named disambiguator names a missing service.
            CompilationError: If a parameter cannot be autowired at all, for example
                because it has no annotation or the signature cannot be read.

        """
        if definition.id in self._done:
            return definition
        self._done.add(definition.id)

        has_explicit_slots = any(
            isinstance(argument, Autowire) for argument in definition.all_arguments()
        )
        if not definition.autowire and not has_explicit_slots:
            return definition

        parameters = self._inspector.inspect(definition)
        annotations = self._inspector.annotations(definition) if parameters else {}

        for position, argument in enumerate(definition.arguments):
            if not isinstance(argument, Autowire):
                continue
            parameter = parameters[position] if position < len(parameters) else None
            request = self._request_from_slot(
                argument,
                label=_position_label(position, parameter),
                annotation=annotations.get(parameter.name) if parameter else None,
                has_default=False,
            )
            definition.arguments[position] = self._bind(definition, request, positional=True)

        for name, argument in list(definition.keyword_arguments.items()):
            if not isinstance(argument, Autowire):
                continue
            request = self._request_from_slot(
                argument,
                label=f"${name}",
                annotation=annotations.get(name),
                has_default=False,
            )
            definition.keyword_arguments[name] = self._bind(definition, request, positional=True)

        if definition.autowire:
            self._autowire_unspecified(definition, parameters, annotations)
        return definition

    def _autowire_unspecified(
        self,
        definition: ServiceDefinition,
        parameters: list[inspect.Parameter],
        annotations: dict[str, Any],
    ) -> None:
        covered = len(definition.arguments)
        for position, parameter in enumerate(parameters):
            if position < covered and parameter.kind is not inspect.Parameter.KEYWORD_ONLY:
                continue
            if parameter.name in definition.keyword_arguments:
                continue
            if parameter.kind is inspect.Parameter.POSITIONAL_ONLY:
                msg = (
                    f"Cannot autowire positional-only parameter '{parameter.name}' of service "
                    f"'{definition.id}'; pass it explicitly in 'arguments'."
                )
                raise CompilationError(msg, service_id=definition.id)
            annotation = annotations.get(parameter.name, inspect.Parameter.empty)
            if annotation is inspect.Parameter.empty:
                if parameter.default is not inspect.Parameter.empty:
                    continue
                msg = (
                    f"Cannot autowire parameter {_position_label(position, parameter)} of service "
                    f"'{definition.id}': it has no type annotation."
                )
                raise CompilationError(msg, service_id=definition.id)
            capability, name, nullable = _split_annotation(annotation)
            request = AutowireRequest(
                argument=_position_label(position, parameter),
                capability=capability,
                name=name,
                nullable=nullable,
                has_default=parameter.default is not inspect.Parameter.empty,
            )
            bound = self._bind(definition, request, positional=False)
            if bound is not None:
                definition.keyword_arguments[parameter.name] = bound

    def _request_from_slot(
        self,
        slot: Autowire,
        *,
        label: str,
        annotation: Any,
        has_default: bool,
    ) -> AutowireRequest:
        capability, name, nullable = (
            _split_annotation(annotation) if annotation is not None else (None, None, False)
        )
        return AutowireRequest(
            argument=label,
            capability=slot.capability if slot.capability is not None else capability,
            name=slot.name if slot.name is not None else name,
            nullable=slot.optional or nullable,
            has_default=has_default,
        )

    def _bind(
        self,
        definition: ServiceDefinition,
        request: AutowireRequest,
        *,
        positional: bool,
    ) -> Argument | None:
        if request.name is not None:
            target = self._graph.resolve_alias(request.name)
            if self._graph.has(target):
                return ServiceReference(request.name)
            if request.nullable or request.has_default:
                return self._absent(request, positional=positional)
            msg = (
                f"Service '{definition.id}' argument {request.argument} names missing service "
                f"'{request.name}'."
            )
            raise UnresolvedReferenceError(msg, reference=request.name, service_id=definition.id)

        if request.capability is None:
            msg = (
                f"Cannot autowire argument {request.argument} of service '{definition.id}': "
                "no capability declared and no annotation to infer it from."
            )
            raise CompilationError(msg, service_id=definition.id)

        candidates = [
            candidate
            for candidate in self._index.providers(request.capability)
            if candidate != definition.id
        ]
        if len(candidates) == 1:
            logger.debug(
                "Autowired '%s' argument %s -> '%s'",
                definition.id,
                request.argument,
                candidates[0],
            )
            return ServiceReference(candidates[0])

        if not candidates:
            if request.nullable or request.has_default:
                return self._absent(request, positional=positional)
            rejected = [
                service_id for service_id in self._graph.ids() if service_id != definition.id
            ]
            msg = (
                f"Cannot autowire argument {request.argument} of service '{definition.id}': "
                f"no service provides {_describe(request.capability)}. "
                f"Rejected candidates: {rejected}."
            )
            raise NoCandidateError(
                msg,
                service_id=definition.id,
                argument=request.argument,
                capability=request.capability,
                candidates=rejected,
            )

        defaults = [
            candidate
            for candidate in self._index.defaults(request.capability)
            if candidate in candidates
        ]
        if len(defaults) == 1:
            return ServiceReference(defaults[0])
        msg = (
            f"Cannot autowire argument {request.argument} of service '{definition.id}': "
            f"{_describe(request.capability)} is provided by {candidates}. Mark exactly one with "
            "'default_for' or name the wanted service explicitly."
        )
        raise AmbiguousCandidateError(
            msg,
            service_id=definition.id,
            argument=request.argument,
            capability=request.capability,
            candidates=candidates,
        )

    def _absent(self, request: AutowireRequest, *, positional: bool) -> Argument | None:
        # positional slots must keep their place; keyword slots fall back to the default
        if not positional and request.has_default:
            return None
        return LiteralValue(None)


def _split_annotation(annotation: Any) -> tuple[Capability | None, ServiceId | None, bool]:
    name: ServiceId | None = None
    if get_origin(annotation) is Annotated:
        annotation, *metadata = get_args(annotation)
        name = next((item.id for item in metadata if isinstance(item, Named)), None)

    nullable = False
    if get_origin(annotation) in {Union, types.UnionType}:
        members = [member for member in get_args(annotation) if member is not type(None)]
        nullable = len(members) != len(get_args(annotation))
        if len(members) == 1:
            annotation = members[0]
        if get_origin(annotation) is Annotated:
            annotation, *metadata = get_args(annotation)
            name = name or next((item.id for item in metadata if isinstance(item, Named)), None)
    return annotation, name, nullable


def _position_label(position: int, parameter: inspect.Parameter | None) -> str:
    if parameter is None:
        return f"#{position}"
    return f"#{position} (${parameter.name})"


def _describe(capability: Capability) -> str:
    return getattr(capability, "__qualname__", repr(capability))


def _token(capability: Capability) -> Any:
    try:
        hash(capability)
    except TypeError:
        return repr(capability)
    return capability


__all__ = ["AutowireRequest", "AutowireResolver", "CapabilityIndex", "ParameterInspector"]
