from __future__ import annotations

import inspect
import keyword
import logging
from collections import Counter, deque

from diforge._internal.autowiring import AutowireResolver
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
    Tag,
    TaggedCollection,
)
from diforge._internal.pipeline import PassPhase
from diforge._internal.registry import DefinitionRegistry
from diforge._internal.tags import TagIndex
from diforge._internal.validator import GraphValidator
from diforge.exceptions import (
    CompilationError,
    UnresolvedParameterError,
    UnresolvedReferenceError,
)

logger = logging.getLogger(__name__)


def root_ids(graph: DefinitionRegistry) -> list[ServiceId]:
    """Return public definitions and targets of public aliases, in registration order."""
    roots: dict[ServiceId, None] = {}
    for definition in graph.definitions():
        if definition.public and not definition.abstract:
            roots[definition.id] = None
    for alias in graph.aliases():
        if not alias.public:
            continue
        target = graph.resolve_alias(alias.id)
        if graph.has(target) and not graph.get(target).abstract:
            roots[target] = None
    return list(roots)


def reachable_ids(graph: DefinitionRegistry) -> set[ServiceId]:
    """Return every definition reachable from the roots by following references."""
    reached: set[ServiceId] = set()
    queue = deque(root_ids(graph))
    while queue:
        service_id = queue.popleft()
        if service_id in reached:
            continue
        reached.add(service_id)
        definition = graph.get(service_id)
        for reference in definition.references():
            target = graph.resolve_alias(reference.id)
            if graph.has(target) and target not in reached:
                queue.append(target)
        for argument in definition.all_arguments():
            if isinstance(argument, TaggedCollection):
                queue.extend(_tag_members(graph, argument.tag, exclude=service_id))
    return reached


def _tag_members(
    graph: DefinitionRegistry,
    tag_name: str,
    *,
    exclude: ServiceId,
) -> list[ServiceId]:
    return [
        definition.id
        for definition in graph.definitions()
        if definition.has_tag(tag_name) and not definition.abstract and definition.id != exclude
    ]


class ResolveParametersPass:
    """Resolve every parameter, freeze the bag and replace parameter references."""

    def process(self, graph: DefinitionRegistry) -> None:
        resolved = graph.parameters.resolve_all()

        for definition in graph.definitions():

            def _resolve(
                argument: Argument,
                definition: ServiceDefinition = definition,
            ) -> Argument:
                if not isinstance(argument, ParameterReference):
                    return argument
                if argument.name not in resolved:
                    msg = (
                        f"Service '{definition.id}' references undefined parameter "
                        f"'{argument.name}'."
                    )
                    raise UnresolvedParameterError(
                        msg,
                        parameter=argument.name,
                        service_id=definition.id,
                    )
                return LiteralValue(resolved[argument.name])

            definition.rewrite_arguments(_resolve)


class ResolveChildDefinitionsPass:
    """Expand definitions declaring a ``parent`` template.

    The child inherits the parent's factory when it has none, overrides
    positional arguments index by index, merges keyword arguments, inherits
    parent tags whose name it does not declare itself, and adds up
    capabilities. ``autowire`` and ``lazy`` are inherited when set on the
    parent. Visibility, sharing and ``abstract`` are the child's own.
    """

    def process(self, graph: DefinitionRegistry) -> None:
        resolved: set[ServiceId] = set()
        for definition in graph.definitions():
            self._resolve(graph, definition, resolved, ())

    def _resolve(
        self,
        graph: DefinitionRegistry,
        definition: ServiceDefinition,
        resolved: set[ServiceId],
        chain: tuple[ServiceId, ...],
    ) -> None:
        if definition.id in resolved or definition.parent is None:
            resolved.add(definition.id)
            return
        if definition.id in chain:
            cycle = " -> ".join((*chain, definition.id))
            msg = f"Circular parent templates: {cycle}."
            raise CompilationError(msg, service_id=definition.id)

        parent_id = graph.resolve_alias(definition.parent)
        parent = graph.find(parent_id)
        if parent is None:
            msg = f"Service '{definition.id}' extends missing parent '{definition.parent}'."
            raise UnresolvedReferenceError(
                msg,
                reference=definition.parent,
                service_id=definition.id,
            )
        self._resolve(graph, parent, resolved, (*chain, definition.id))

        arguments = list(parent.arguments)
        for position, argument in enumerate(definition.arguments):
            if position < len(arguments):
                arguments[position] = argument
            else:
                arguments.append(argument)
        child_tag_names = {tag.name for tag in definition.tags}
        inherited_tags: list[Tag] = [tag for tag in parent.tags if tag.name not in child_tag_names]

        definition.factory = definition.factory or parent.factory
        definition.arguments = arguments
        definition.keyword_arguments = {**parent.keyword_arguments, **definition.keyword_arguments}
        definition.tags = [*inherited_tags, *definition.tags]
        definition.capabilities = tuple(
            dict.fromkeys((*parent.capabilities, *definition.capabilities)),
        )
        definition.autowire = definition.autowire or parent.autowire
        definition.lazy = definition.lazy or parent.lazy
        definition.parent = None
        resolved.add(definition.id)
        logger.debug("Resolved '%s' from parent template '%s'", definition.id, parent_id)


class AutoconfigurePass:
    """Tag definitions by the capabilities they provide."""

    def __init__(self, tag_index: TagIndex) -> None:
        self._tag_index = tag_index

    def process(self, graph: DefinitionRegistry) -> None:
        self._tag_index.rebuild(graph)


class AutowirePass:
    """Autowire definitions lazily, walking the graph from its roots.

    Only definitions that are reached are autowired, so an unused definition
    with an unsatisfiable dependency never fails the build.
    """

    def process(self, graph: DefinitionRegistry) -> None:
        resolver = AutowireResolver(graph)
        reached: set[ServiceId] = set()
        queue = deque(root_ids(graph))
        while queue:
            service_id = queue.popleft()
            if service_id in reached:
                continue
            reached.add(service_id)
            definition = resolver.autowire(graph.get(service_id))
            for reference in definition.references():
                target = graph.resolve_alias(reference.id)
                if graph.has(target) and target not in reached:
                    queue.append(target)
            for argument in definition.all_arguments():
                if isinstance(argument, TaggedCollection):
                    queue.extend(_tag_members(graph, argument.tag, exclude=service_id))


class ResolveReferencesToAliasesPass:
    """Point references and aliases directly at the final definition."""

    def process(self, graph: DefinitionRegistry) -> None:
        for alias in graph.aliases():
            target = graph.resolve_alias(alias.id)
            if target != alias.target:
                graph.set_alias(alias.id, target, public=alias.public)

        def _resolve(argument: Argument) -> Argument:
            if not isinstance(argument, ServiceReference):
                return argument
            target = graph.resolve_alias(argument.id)
            if target == argument.id:
                return argument
            return ServiceReference(target, optional=argument.optional, lazy=argument.lazy)

        for definition in graph.definitions():
            definition.rewrite_arguments(_resolve)


class ResolveTaggedCollectionsPass:
    """Bake every ``TaggedCollection`` into an ordered list of references.

    Members are ordered by descending ``priority``, then by identifier. A
    service never receives itself in a collection of its own tag.
    """

    def process(self, graph: DefinitionRegistry) -> None:
        index = TagIndex()
        index.rebuild(graph)

        for definition in graph.definitions():

            def _bake(argument: Argument, consumer: ServiceId = definition.id) -> Argument:
                if not isinstance(argument, TaggedCollection):
                    return argument
                references = tuple(
                    ServiceReference(service_id)
                    for service_id in index.tagged_ids(argument.tag)
                    if service_id != consumer
                )
                return ServiceCollection(argument.tag, references)

            definition.rewrite_arguments(_bake)


class CheckDefinitionsPass:
    """Check that every concrete definition can actually be constructed."""

    def process(self, graph: DefinitionRegistry) -> None:
        reached = reachable_ids(graph)
        for definition in graph.definitions():
            if definition.parent is not None:
                msg = f"Service '{definition.id}' still extends '{definition.parent}'."
                raise CompilationError(msg, service_id=definition.id)
            if definition.abstract:
                continue
            if definition.factory is None:
                msg = f"Service '{definition.id}' has no factory and is not abstract."
                raise CompilationError(msg, service_id=definition.id)
            for name in definition.keyword_arguments:
                if not name.isidentifier() or keyword.iskeyword(name):
                    msg = f"Service '{definition.id}' has invalid keyword argument name {name!r}."
                    raise CompilationError(msg, service_id=definition.id)
            if definition.id in reached:
                _check_autowired(definition)


def _check_autowired(definition: ServiceDefinition) -> None:
    # definitions added after AutowirePass ran are never autowired
    for argument in definition.all_arguments():
        if isinstance(argument, Autowire):
            msg = (
                f"Service '{definition.id}' still has an unresolved autowire slot; "
                "it was added after autowiring ran."
            )
            raise CompilationError(msg, service_id=definition.id)
    if not definition.autowire or definition.factory is None:
        return
    try:
        signature = inspect.signature(definition.factory)
    except (TypeError, ValueError):
        return
    try:
        signature.bind(*definition.arguments, **definition.keyword_arguments)
    except TypeError as error:
        msg = (
            f"Service '{definition.id}' cannot be constructed with its arguments: {error}. "
            "Definitions added after autowiring ran are not autowired."
        )
        raise CompilationError(msg, service_id=definition.id) from error


class CheckReferencesPass:
    """Check that every required reference points at a concrete definition."""

    def process(self, graph: DefinitionRegistry) -> None:
        for alias in graph.aliases():
            target_id = graph.resolve_alias_strict(alias.id)
            if alias.public and graph.get(target_id).abstract:
                msg = (
                    f"Alias '{alias.id}' points to abstract service '{target_id}', "
                    "which can only be used as a parent template."
                )
                raise CompilationError(msg, service_id=alias.id)

        for definition in graph.definitions():
            if definition.abstract:
                continue
            for reference in definition.references():
                target_id = graph.resolve_alias(reference.id)
                target = graph.find(target_id)
                if target is None:
                    if reference.optional:
                        continue
                    msg = (
                        f"Service '{definition.id}' depends on missing service '{reference.id}'."
                    )
                    raise UnresolvedReferenceError(
                        msg,
                        reference=reference.id,
                        service_id=definition.id,
                    )
                if target.abstract:
                    msg = (
                        f"Service '{definition.id}' depends on abstract service '{target_id}', "
                        "which can only be used as a parent template."
                    )
                    raise CompilationError(msg, service_id=definition.id)


class CheckCircularReferencesPass:
    """Reject dependency cycles that are not fully lazy."""

    def __init__(self, validator: GraphValidator | None = None) -> None:
        self._validator = validator or GraphValidator()

    def process(self, graph: DefinitionRegistry) -> None:
        self._validator.validate(graph)


class RemovePrivateAliasesPass:
    """Drop private aliases; references were already rewritten to their targets."""

    def process(self, graph: DefinitionRegistry) -> None:
        for alias in graph.aliases():
            if not alias.public:
                graph.remove_alias(alias.id)


class RemoveUnusedDefinitionsPass:
    """Delete every definition not reachable from a public service or alias."""

    def process(self, graph: DefinitionRegistry) -> None:
        reached = reachable_ids(graph)
        for definition in graph.definitions():
            if definition.id not in reached:
                logger.debug("Removing unused definition '%s'", definition.id)
                graph.remove(definition.id)


class InlineServiceDefinitionsPass:
    """Embed private services used by exactly one consumer into that consumer.

    A service is inlined only when that cannot change how many instances
    exist: it must be referenced once, eagerly, and either be non-shared or
    be consumed by a shared service. Lazy services, collection members and
    alias targets are never inlined.
    """

    def process(self, graph: DefinitionRegistry) -> None:
        # inlining a non-shared consumer into a shared one can make its own
        # dependencies eligible, so repeat until nothing changes
        while candidates := self._find_candidates(graph):
            self._inline(graph, candidates)

    def _inline(self, graph: DefinitionRegistry, candidates: set[ServiceId]) -> None:
        def _replace(argument: Argument) -> Argument:
            if isinstance(argument, ServiceReference) and argument.id in candidates:
                return InlinedService(graph.get(argument.id))
            return argument

        for definition in graph.definitions():
            if definition.id not in candidates:
                definition.rewrite_arguments(_replace)
        for service_id in candidates:
            # nested candidates are rewritten through the consumer that embeds them
            graph.get(service_id).rewrite_arguments(_replace)
        for service_id in sorted(candidates):
            logger.debug("Inlined private service '%s'", service_id)
            graph.remove(service_id)

    def _find_candidates(self, graph: DefinitionRegistry) -> set[ServiceId]:
        direct_uses: Counter[ServiceId] = Counter()
        consumers: dict[ServiceId, ServiceDefinition] = {}
        excluded: set[ServiceId] = {alias.target for alias in graph.aliases()}

        for definition in graph.definitions():
            for argument in definition.all_arguments():
                if isinstance(argument, ServiceCollection):
                    excluded.update(reference.id for reference in argument.references)
            for reference in definition.references():
                if reference.lazy:
                    excluded.add(reference.id)
                    continue
                direct_uses[reference.id] += 1
                consumers[reference.id] = definition

        candidates: set[ServiceId] = set()
        for definition in graph.definitions():
            if definition.public or definition.lazy or definition.abstract:
                continue
            if definition.id in excluded or direct_uses[definition.id] != 1:
                continue
            consumer = consumers[definition.id]
            if consumer.id == definition.id:
                continue
            if definition.shared and not consumer.shared:
                continue
            candidates.add(definition.id)
        return candidates


def builtin_passes(tag_index: TagIndex) -> list[tuple[object, PassPhase, int]]:
    """Return the built-in passes with their phase and priority."""
    return [
        (ResolveParametersPass(), PassPhase.BEFORE_OPTIMIZATION, 100),
        (ResolveChildDefinitionsPass(), PassPhase.BEFORE_OPTIMIZATION, 90),
        (AutoconfigurePass(tag_index), PassPhase.BEFORE_OPTIMIZATION, 80),
        (AutowirePass(), PassPhase.BEFORE_OPTIMIZATION, -100),
        (ResolveReferencesToAliasesPass(), PassPhase.OPTIMIZE, 100),
        (ResolveTaggedCollectionsPass(), PassPhase.OPTIMIZE, 0),
        (CheckDefinitionsPass(), PassPhase.BEFORE_REMOVING, 100),
        (CheckReferencesPass(), PassPhase.BEFORE_REMOVING, 50),
        (CheckCircularReferencesPass(), PassPhase.BEFORE_REMOVING, 0),
        (RemovePrivateAliasesPass(), PassPhase.REMOVE, 100),
        (RemoveUnusedDefinitionsPass(), PassPhase.REMOVE, 0),
        (InlineServiceDefinitionsPass(), PassPhase.AFTER_REMOVING, 0),
    ]


__all__ = [
    "AutoconfigurePass",
    "AutowirePass",
    "CheckCircularReferencesPass",
    "CheckDefinitionsPass",
    "CheckReferencesPass",
    "InlineServiceDefinitionsPass",
    "RemovePrivateAliasesPass",
    "RemoveUnusedDefinitionsPass",
    "ResolveChildDefinitionsPass",
    "ResolveParametersPass",
    "ResolveReferencesToAliasesPass",
    "ResolveTaggedCollectionsPass",
    "builtin_passes",
    "reachable_ids",
    "root_ids",
]
