from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Any

from diforge._internal.definitions import (
    Alias,
    ServiceDefinition,
    ServiceId,
    TagAttributeValue,
)
from diforge._internal.parameters import ParameterBag
from diforge.exceptions import (
    CircularAliasError,
    InvalidDefinitionError,
    NotFoundError,
    UnresolvedReferenceError,
)

logger = logging.getLogger(__name__)


class DefinitionRegistry:
    """Mutable store of definitions, aliases and parameters before compilation.

    Definitions and aliases share one identifier namespace. Adding either
    replaces whatever was previously registered under the same identifier
    (last writer wins), which is how environment-specific overrides work.

    Iteration follows insertion order. That order is only ever used for
    diagnostics: resolution order is derived from the dependency graph.

    Compiler passes receive a registry as "the graph" and may mutate it freely.
    """

    def __init__(self) -> None:
        self._definitions: dict[ServiceId, ServiceDefinition] = {}
        self._aliases: dict[ServiceId, Alias] = {}
        self.parameters = ParameterBag()

    # region Definitions
    def add(self, definition: ServiceDefinition) -> ServiceDefinition:
        """Register ``definition``, replacing any definition or alias with the same id.

        Args:
            definition: Definition to store.

        Returns:
            The stored definition, for further tweaking.

        Raises:
            InvalidDefinitionError: If ``definition`` is not a ``ServiceDefinition``.

        """
        if not isinstance(definition, ServiceDefinition):
            msg = f"Expected a ServiceDefinition, got {type(definition).__name__}."
            raise InvalidDefinitionError(msg)
        if definition.id in self._definitions:
            logger.debug("Definition '%s' overrides a previous definition", definition.id)
            # re-insert so the override shows up at its new position in diagnostics
            del self._definitions[definition.id]
        self._aliases.pop(definition.id, None)
        self._definitions[definition.id] = definition
        return definition

    def get(self, service_id: ServiceId) -> ServiceDefinition:
        """Return the definition registered under ``service_id`` (aliases are not followed).

        Raises:
            NotFoundError: If no definition has that identifier.

        """
        try:
            return self._definitions[service_id]
        except KeyError:
            raise NotFoundError(service_id, known=list(self._definitions)) from None

    def find(self, service_id: ServiceId) -> ServiceDefinition | None:
        return self._definitions.get(service_id)

    def has(self, service_id: ServiceId) -> bool:
        return service_id in self._definitions

    def remove(self, service_id: ServiceId) -> None:
        """Remove a definition. Removing an unknown identifier is a no-op."""
        self._definitions.pop(service_id, None)

    def definitions(self) -> list[ServiceDefinition]:
        return list(self._definitions.values())

    def ids(self) -> list[ServiceId]:
        return list(self._definitions)

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._definitions or service_id in self._aliases

    def __iter__(self) -> Iterator[ServiceDefinition]:
        return iter(list(self._definitions.values()))

    def __len__(self) -> int:
        return len(self._definitions)

    def find_tagged_by(
        self,
        tag_name: str,
    ) -> list[tuple[ServiceId, Mapping[str, TagAttributeValue]]]:
        """Return ``(id, attributes)`` for every occurrence of ``tag_name``.

        A definition carrying the tag several times appears once per occurrence.
        Results follow registration order.
        """
        return [
            (definition.id, tag.attributes)
            for definition in self._definitions.values()
            for tag in definition.tags
            if tag.name == tag_name
        ]

    def tag_names(self) -> list[str]:
        names: dict[str, None] = {}
        for definition in self._definitions.values():
            for tag in definition.tags:
                names[tag.name] = None
        return list(names)

    # endregion Definitions

    # region Aliases
    def set_alias(self, alias_id: ServiceId, target: ServiceId, *, public: bool = True) -> Alias:
        """Make ``alias_id`` an alternate identifier for ``target``.

        Raises:
            InvalidDefinitionError: If identifiers are empty or the alias targets itself.

        """
        if not alias_id or not target:
            msg = f"Alias identifiers must be non-empty, got {alias_id!r} -> {target!r}."
            raise InvalidDefinitionError(msg)
        if alias_id == target:
            msg = f"Alias '{alias_id}' cannot target itself."
            raise InvalidDefinitionError(msg)
        self._definitions.pop(alias_id, None)
        alias = Alias(alias_id, target, public=public)
        self._aliases[alias_id] = alias
        return alias

    def remove_alias(self, alias_id: ServiceId) -> None:
        self._aliases.pop(alias_id, None)

    def has_alias(self, alias_id: ServiceId) -> bool:
        return alias_id in self._aliases

    def get_alias(self, alias_id: ServiceId) -> Alias:
        try:
            return self._aliases[alias_id]
        except KeyError:
            raise NotFoundError(alias_id, known=list(self._aliases)) from None

    def aliases(self) -> list[Alias]:
        return list(self._aliases.values())

    def resolve_alias(self, service_id: ServiceId) -> ServiceId:
        """Follow aliases transitively and return the final identifier.

        An identifier that is not an alias is returned unchanged, whether or not
        a definition exists for it.

        Raises:
            CircularAliasError: If the alias chain loops.

        """
        chain: list[ServiceId] = []
        current = service_id
        while current in self._aliases:
            if current in chain:
                raise CircularAliasError([*chain[chain.index(current) :], current])
            chain.append(current)
            current = self._aliases[current].target
        return current

    def resolve_alias_strict(self, service_id: ServiceId) -> ServiceId:
        """Like ``resolve_alias`` but the final target must be a real definition.

        Raises:
            UnresolvedReferenceError: If the chain ends at a missing definition.

        """
        target = self.resolve_alias(service_id)
        if target not in self._definitions:
            msg = f"Alias '{service_id}' points to missing service '{target}'."
            raise UnresolvedReferenceError(msg, reference=target, service_id=service_id)
        return target

    # endregion Aliases

    # region Parameters
    def set_parameter(self, name: str, value: Any) -> None:
        self.parameters.set(name, value)

    def get_parameter(self, name: str) -> Any:
        return self.parameters.get(name)

    def has_parameter(self, name: str) -> bool:
        return self.parameters.has(name)

    # endregion Parameters

    def copy(self) -> DefinitionRegistry:
        """Return an independent copy: passes can mutate it without touching this one."""
        registry = DefinitionRegistry()
        registry._definitions = {
            service_id: definition.copy() for service_id, definition in self._definitions.items()
        }
        registry._aliases = dict(self._aliases)
        registry.parameters = self.parameters.copy()
        return registry

    def snapshot(self) -> tuple[Any, ...]:
        """Return a structural snapshot comparable with ``==``."""
        return (
            tuple(definition.state() for definition in self._definitions.values()),
            tuple(self._aliases.values()),
            tuple(sorted(self.parameters.all().items(), key=lambda item: item[0])),
        )


__all__ = ["DefinitionRegistry"]
