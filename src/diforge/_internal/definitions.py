from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, NamedTuple, TypeAlias

from diforge.exceptions import InvalidDefinitionError

ServiceId: TypeAlias = str
"""Unique identifier of a service definition or alias."""

Capability: TypeAlias = Any
"""A capability token: usually a class or protocol, but any hashable value works."""

TagAttributeValue: TypeAlias = str | int | float | bool


@dataclass(frozen=True, slots=True)
class ServiceReference:
    """Reference another service by identifier.

    Set ``optional=True`` to inject ``None`` when the target does not exist.
    Set ``lazy=True`` to inject a ``Deferred`` handle instead of an instance.
    """

    id: ServiceId
    optional: bool = False
    lazy: bool = False


@dataclass(frozen=True, slots=True)
class ParameterReference:
    """Reference a container parameter by name."""

    name: str


@dataclass(frozen=True, slots=True)
class LiteralValue:
    """Pass a literal value unchanged."""

    value: Any


@dataclass(frozen=True, slots=True)
class TaggedCollection:
    """Inject every service carrying ``tag``, highest ``priority`` first."""

    tag: str


@dataclass(frozen=True, slots=True)
class Autowire:
    """Mark an argument slot to be filled by autowiring.

    ``capability`` overrides the annotation of the constructor parameter,
    ``name`` skips the search and binds the service with that identifier, and
    ``optional`` resolves the slot to ``None`` when nothing matches.
    """

    capability: Capability | None = None
    name: ServiceId | None = None
    optional: bool = False


@dataclass(frozen=True, slots=True)
class ServiceCollection:
    """Ordered references produced by baking a ``TaggedCollection``."""

    tag: str
    references: tuple[ServiceReference, ...]


@dataclass(frozen=True, slots=True)
class InlinedService:
    """A private single-use definition embedded into its only consumer."""

    definition: ServiceDefinition


Argument: TypeAlias = (
    ServiceReference
    | ParameterReference
    | LiteralValue
    | TaggedCollection
    | Autowire
    | ServiceCollection
    | InlinedService
)

ARGUMENT_TYPES: tuple[type[Any], ...] = (
    ServiceReference,
    ParameterReference,
    LiteralValue,
    TaggedCollection,
    Autowire,
    ServiceCollection,
    InlinedService,
)


class Named(NamedTuple):
    """Annotation metadata naming the exact service to inject.

    Examples:
        .. code-block:: python

            class Mailer:
                def __init__(self, transport: Annotated[Transport, Named("smtp")]) -> None: ...

    """

    id: ServiceId


@dataclass(frozen=True, slots=True)
class Tag:
    """A tag attached to a definition, with free-form attributes."""

    name: str
    attributes: Mapping[str, TagAttributeValue] = field(default_factory=dict)

    @property
    def priority(self) -> float:
        value = self.attributes.get("priority", 0)
        if isinstance(value, bool) or not isinstance(value, int | float):
            msg = f"Tag '{self.name}' priority must be a number, got {value!r}."
            raise InvalidDefinitionError(msg)
        return value

    def merged_with(self, inferred: Tag) -> Tag:
        """Fill attributes missing from this tag with the inferred ones."""
        return Tag(self.name, {**inferred.attributes, **self.attributes})


@dataclass(frozen=True, slots=True)
class Alias:
    """An alternate identifier for ``target``."""

    id: ServiceId
    target: ServiceId
    public: bool = True


@dataclass(slots=True)
class ServiceDefinition:
    """The recipe used to construct one service."""

    id: ServiceId
    """Unique identifier of the service."""
    factory: Callable[..., Any] | None = None
    """Class or callable invoked with the resolved arguments."""
    arguments: list[Argument] = field(default_factory=list)
    """Positional arguments, in call order."""
    keyword_arguments: dict[str, Argument] = field(default_factory=dict)
    """Keyword arguments, by parameter name."""
    tags: list[Tag] = field(default_factory=list)
    """Tags in declaration order. The same name may appear more than once."""
    public: bool = True
    """Whether the service may be fetched from the compiled container."""
    shared: bool = True
    """Whether a single instance is reused for the lifetime of the container."""
    abstract: bool = False
    """Template only: never instantiated, only used through ``parent``."""
    lazy: bool = False
    """Inject a ``Deferred`` handle instead of constructing the service eagerly."""
    autowire: bool = False
    """Fill unspecified constructor parameters by capability matching."""
    capabilities: tuple[Capability, ...] = ()
    """Capabilities declared in addition to the factory's class hierarchy."""
    default_for: tuple[Capability, ...] = ()
    """Capabilities for which this service is the default implementation."""
    parent: ServiceId | None = None
    """Identifier of an abstract template this definition extends."""

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            msg = f"Service identifier must be a non-empty string, got {self.id!r}."
            raise InvalidDefinitionError(msg)
        if self.factory is not None and not callable(self.factory):
            msg = f"Factory of service '{self.id}' must be callable, got {self.factory!r}."
            raise InvalidDefinitionError(msg)
        self.arguments = [_coerce_argument(self.id, argument) for argument in self.arguments]
        self.keyword_arguments = {
            name: _coerce_argument(self.id, argument)
            for name, argument in self.keyword_arguments.items()
        }
        self.tags = [_coerce_tag(self.id, tag) for tag in self.tags]
        self.capabilities = tuple(self.capabilities)
        self.default_for = tuple(self.default_for)

    def has_tag(self, name: str) -> bool:
        return any(tag.name == name for tag in self.tags)

    def tags_named(self, name: str) -> list[Tag]:
        return [tag for tag in self.tags if tag.name == name]

    def all_arguments(self) -> Iterator[Argument]:
        """Iterate positional arguments, then keyword arguments."""
        yield from self.arguments
        yield from self.keyword_arguments.values()

    def references(self) -> Iterator[ServiceReference]:
        """Iterate every service reference, including collection members and inlined services."""
        for argument in self.all_arguments():
            if isinstance(argument, ServiceReference):
                yield argument
            elif isinstance(argument, ServiceCollection):
                yield from argument.references
            elif isinstance(argument, InlinedService):
                yield from argument.definition.references()

    def rewrite_arguments(self, rewrite: Callable[[Argument], Argument]) -> None:
        """Replace every argument with ``rewrite(argument)``, in place.

        Collection members are rewritten one by one and must stay service
        references. Inlined definitions are rewritten recursively.
        """
        self.arguments = [_rewrite(self.id, argument, rewrite) for argument in self.arguments]
        self.keyword_arguments = {
            name: _rewrite(self.id, argument, rewrite)
            for name, argument in self.keyword_arguments.items()
        }

    def provided_capabilities(self) -> tuple[Capability, ...]:
        """Return declared capabilities followed by the factory's class hierarchy."""
        provided: list[Capability] = list(self.capabilities)
        if isinstance(self.factory, type):
            provided.extend(klass for klass in self.factory.__mro__ if klass is not object)
        return tuple(dict.fromkeys(provided))

    def copy(self) -> ServiceDefinition:
        return ServiceDefinition(
            id=self.id,
            factory=self.factory,
            arguments=[_copy_argument(argument) for argument in self.arguments],
            keyword_arguments={
                name: _copy_argument(argument) for name, argument in self.keyword_arguments.items()
            },
            tags=list(self.tags),
            public=self.public,
            shared=self.shared,
            abstract=self.abstract,
            lazy=self.lazy,
            autowire=self.autowire,
            capabilities=self.capabilities,
            default_for=self.default_for,
            parent=self.parent,
        )

    def state(self) -> tuple[Any, ...]:
        """Return a comparable structural snapshot used for change detection."""
        return (
            self.id,
            self.factory,
            tuple(self.arguments),
            tuple(self.keyword_arguments.items()),
            tuple((tag.name, tuple(tag.attributes.items())) for tag in self.tags),
            self.public,
            self.shared,
            self.abstract,
            self.lazy,
            self.autowire,
            self.capabilities,
            self.default_for,
            self.parent,
        )


def _copy_argument(argument: Argument) -> Argument:
    if isinstance(argument, InlinedService):
        return InlinedService(argument.definition.copy())
    return argument


def _rewrite(
    service_id: ServiceId,
    argument: Argument,
    rewrite: Callable[[Argument], Argument],
) -> Argument:
    if isinstance(argument, InlinedService):
        argument.definition.rewrite_arguments(rewrite)
        return argument
    if isinstance(argument, ServiceCollection):
        references = []
        for reference in argument.references:
            rewritten = rewrite(reference)
            if not isinstance(rewritten, ServiceReference):
                msg = (
                    f"Collection '{argument.tag}' of service '{service_id}' may only contain "
                    f"service references, got {rewritten!r}."
                )
                raise InvalidDefinitionError(msg)
            references.append(rewritten)
        return ServiceCollection(argument.tag, tuple(references))
    return rewrite(argument)


def _coerce_argument(service_id: ServiceId, argument: Any) -> Argument:
    if isinstance(argument, ARGUMENT_TYPES):
        return argument
    if argument is None or isinstance(argument, str | int | float | bool | list | tuple | dict):
        return LiteralValue(argument)
    msg = (
        f"Argument {argument!r} of service '{service_id}' is not supported. Wrap objects in "
        "LiteralValue(...) or reference them with ServiceReference(...)."
    )
    raise InvalidDefinitionError(msg)


def _coerce_tag(service_id: ServiceId, tag: Any) -> Tag:
    if isinstance(tag, Tag):
        return tag
    if isinstance(tag, str) and tag:
        return Tag(tag)
    msg = f"Tag {tag!r} of service '{service_id}' must be a Tag or a non-empty string."
    raise InvalidDefinitionError(msg)


__all__ = [
    "ARGUMENT_TYPES",
    "Alias",
    "Argument",
    "Autowire",
    "Capability",
    "InlinedService",
    "LiteralValue",
    "Named",
    "ParameterReference",
    "ServiceCollection",
    "ServiceDefinition",
    "ServiceId",
    "ServiceReference",
    "Tag",
    "TaggedCollection",
]
