from diforge._internal.builder import ContainerBuilder
from diforge._internal.compiled import CompiledContainer, Deferred
from diforge._internal.definitions import (
    Alias,
    Autowire,
    LiteralValue,
    Named,
    ParameterReference,
    ServiceDefinition,
    ServiceReference,
    Tag,
    TaggedCollection,
)
from diforge._internal.lock_mode import LockMode
from diforge._internal.pipeline import CompilerPass, PassPhase
from diforge._internal.providers import ServiceProvider
from diforge._internal.registry import DefinitionRegistry
from diforge.exceptions import (
    AccessError,
    AmbiguousCandidateError,
    CircularAliasError,
    CircularParameterError,
    CompilationError,
    CyclicServiceGraphError,
    DIForgeError,
    InvalidDefinitionError,
    NoCandidateError,
    NotFoundError,
    UnresolvedParameterError,
    UnresolvedReferenceError,
)

__all__ = [
    "AccessError",
    "Alias",
    "AmbiguousCandidateError",
    "Autowire",
    "CircularAliasError",
    "CircularParameterError",
    "CompilationError",
    "CompiledContainer",
    "CompilerPass",
    "ContainerBuilder",
    "CyclicServiceGraphError",
    "DIForgeError",
    "Deferred",
    "DefinitionRegistry",
    "InvalidDefinitionError",
    "LiteralValue",
    "LockMode",
    "Named",
    "NoCandidateError",
    "NotFoundError",
    "ParameterReference",
    "PassPhase",
    "ServiceDefinition",
    "ServiceProvider",
    "ServiceReference",
    "Tag",
    "TaggedCollection",
    "UnresolvedParameterError",
    "UnresolvedReferenceError",
]
