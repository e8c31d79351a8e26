from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from diforge._internal.definitions import (
    Capability,
    ServiceDefinition,
    ServiceId,
    Tag,
    TagAttributeValue,
)
from diforge._internal.registry import DefinitionRegistry
from diforge.exceptions import CompilationError, InvalidDefinitionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AutoconfigurationRule:
    """Attach ``tag`` to every definition providing ``capability``."""

    capability: Capability
    tag: Tag


@dataclass(frozen=True, slots=True)
class TaggedService:
    """One entry of the tag index."""

    service_id: ServiceId
    attributes: Mapping[str, TagAttributeValue] = field(default_factory=dict)
    priority: float = 0


def sort_tagged(entries: list[TaggedService]) -> list[TaggedService]:
    """Order entries by descending priority, then by identifier."""
    return sorted(entries, key=lambda entry: (-entry.priority, entry.service_id))


class TagIndex:
    """Secondary index from tag name to tagged services, plus autoconfiguration.

    The index is derived data: ``rebuild`` recomputes it from the graph, first
    applying autoconfiguration rules so that services are tagged by the
    capabilities they provide. Explicitly declared tags always win over
    inferred ones; inferred attributes only fill in keys the explicit tag lacks.
    """

    def __init__(self) -> None:
        self._rules: list[AutoconfigurationRule] = []
        self._index: dict[str, list[TaggedService]] = {}

    def register_for_autoconfiguration(
        self,
        capability: Capability,
        tag_name: str,
        **attributes: TagAttributeValue,
    ) -> AutoconfigurationRule:
        if not tag_name:
            msg = "Autoconfiguration tag name must be a non-empty string."
            raise InvalidDefinitionError(msg)
        rule = AutoconfigurationRule(capability, Tag(tag_name, attributes))
        self._rules.append(rule)
        return rule

    @property
    def rules(self) -> tuple[AutoconfigurationRule, ...]:
        return tuple(self._rules)

    def copy(self) -> TagIndex:
        index = TagIndex()
        index._rules = list(self._rules)
        return index

    def rebuild(self, graph: DefinitionRegistry) -> dict[str, list[TaggedService]]:
        """Autoconfigure ``graph`` in place and recompute the index.

        Running ``rebuild`` twice yields the same tags: a rule never adds a tag
        the definition already carries.
        """
        for definition in graph.definitions():
            if not definition.abstract:
                self._autoconfigure(definition)

        index: dict[str, list[TaggedService]] = {}
        for definition in graph.definitions():
            if definition.abstract:
                continue
            best: dict[str, TaggedService] = {}
            for tag in definition.tags:
                try:
                    priority = tag.priority
                except InvalidDefinitionError as error:
                    raise CompilationError(error.args[0], service_id=definition.id) from error
                entry = TaggedService(definition.id, tag.attributes, priority)
                current = best.get(tag.name)
                if current is None or entry.priority > current.priority:
                    best[tag.name] = entry
            for tag_name, entry in best.items():
                index.setdefault(tag_name, []).append(entry)

        self._index = {tag_name: sort_tagged(entries) for tag_name, entries in index.items()}
        return self._index

    def tagged(self, tag_name: str) -> list[TaggedService]:
        return list(self._index.get(tag_name, ()))

    def tagged_ids(self, tag_name: str) -> list[ServiceId]:
        return [entry.service_id for entry in self._index.get(tag_name, ())]

    def tag_names(self) -> list[str]:
        return list(self._index)

    def _autoconfigure(self, definition: ServiceDefinition) -> None:
        provided = definition.provided_capabilities()
        inferred: dict[str, Tag] = {}
        for rule in self._rules:
            if rule.capability not in provided:
                continue
            previous = inferred.get(rule.tag.name)
            # earlier rules win, later rules only add missing attributes
            inferred[rule.tag.name] = previous.merged_with(rule.tag) if previous else rule.tag

        for tag_name, inferred_tag in inferred.items():
            explicit = definition.tags_named(tag_name)
            if not explicit:
                logger.debug("Autoconfigured tag '%s' on '%s'", tag_name, definition.id)
                definition.tags.append(inferred_tag)
                continue
            definition.tags = [
                tag.merged_with(inferred_tag) if tag.name == tag_name else tag
                for tag in definition.tags
            ]


__all__ = ["AutoconfigurationRule", "TagIndex", "TaggedService", "sort_tagged"]
