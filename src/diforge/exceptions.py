from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from diforge._internal.pipeline import PassPhase


class DIForgeError(Exception):
    """Represent a base class for all diforge-specific failures.

    Catch this type when you want to handle any diforge error path without
    matching each concrete exception class individually.
    """


class InvalidDefinitionError(DIForgeError):
    """Signal invalid input while registering definitions, aliases or parameters.

    Raised by ``DefinitionRegistry.add``, ``ContainerBuilder.register`` and the
    other registration APIs before any compilation happens.

    Typical fixes include passing a non-empty identifier, a callable factory
    and argument objects exported by ``diforge``.
    """


class CompilationError(DIForgeError):
    """Signal that compilation was aborted.

    Every compile-time failure is a ``CompilationError``. No compiled
    container is produced when one is raised.

    Attributes:
        phase: Pipeline phase that was running, when known.
        service_id: Identifier of the offending definition, when known.

    """

    def __init__(
        self,
        message: str,
        *,
        phase: PassPhase | None = None,
        service_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.service_id = service_id

    def __str__(self) -> str:
        details = []
        if self.phase is not None:
            details.append(f"phase={self.phase.name}")
        if self.service_id is not None:
            details.append(f"service={self.service_id!r}")
        if not details:
            return self.message
        return f"{self.message} [{', '.join(details)}]"


class UnresolvedReferenceError(CompilationError):
    """Signal a required service reference to an identifier that does not exist.

    Typical fixes include registering the missing definition, fixing a typo in
    the reference, or marking the reference ``optional=True``.
    """

    def __init__(
        self,
        message: str,
        *,
        reference: str,
        phase: PassPhase | None = None,
        service_id: str | None = None,
    ) -> None:
        super().__init__(message, phase=phase, service_id=service_id)
        self.reference = reference


class UnresolvedParameterError(CompilationError):
    """Signal a parameter reference to a parameter that was never defined."""

    def __init__(
        self,
        message: str,
        *,
        parameter: str,
        phase: PassPhase | None = None,
        service_id: str | None = None,
    ) -> None:
        super().__init__(message, phase=phase, service_id=service_id)
        self.parameter = parameter


class CircularParameterError(CompilationError):
    """Signal a parameter whose value references itself transitively.

    Attributes:
        chain: Parameter names forming the loop, first name repeated at the end.

    """

    def __init__(
        self,
        chain: Sequence[str],
        *,
        phase: PassPhase | None = None,
        service_id: str | None = None,
    ) -> None:
        self.chain = tuple(chain)
        msg = f"Circular parameter reference: {' -> '.join(self.chain)}."
        super().__init__(msg, phase=phase, service_id=service_id)


class CircularAliasError(CompilationError):
    """Signal aliases that point at each other without reaching a definition."""

    def __init__(self, chain: Sequence[str]) -> None:
        self.chain = tuple(chain)
        msg = f"Circular alias chain: {' -> '.join(self.chain)}."
        super().__init__(msg, service_id=self.chain[0])


class _CandidateError(CompilationError):
    def __init__(
        self,
        message: str,
        *,
        service_id: str,
        argument: str,
        capability: Any,
        candidates: Sequence[str],
        phase: PassPhase | None = None,
    ) -> None:
        super().__init__(message, phase=phase, service_id=service_id)
        self.argument = argument
        self.capability = capability
        self.candidates = tuple(candidates)


class NoCandidateError(_CandidateError):
    """Signal that autowiring found no definition implementing a capability.

    The message names the consumer, the argument position and every
    definition that was considered and rejected.

    Typical fixes include registering an implementation, declaring the
    capability in ``capabilities=...``, or making the parameter optional.
    """


class AmbiguousCandidateError(_CandidateError):
    """Signal that autowiring found several implementations of a capability.

    Typical fixes include marking exactly one candidate with
    ``default_for=(capability,)`` or naming the wanted service with
    ``Autowire(name=...)`` / ``Annotated[T, Named(...)]``.
    """


class CyclicServiceGraphError(CompilationError):
    """Signal a dependency cycle that contains at least one eager edge.

    Attributes:
        cycle: Identifiers along the cycle, first identifier repeated at the end.

    Typical fix is breaking the cycle or making every reference in it lazy.
    """

    def __init__(
        self,
        cycle: Sequence[str],
        *,
        phase: PassPhase | None = None,
    ) -> None:
        self.cycle = tuple(cycle)
        msg = f"Circular service reference: {' -> '.join(self.cycle)}."
        super().__init__(msg, phase=phase, service_id=self.cycle[0] if self.cycle else None)


class AccessError(DIForgeError):
    """Signal a lookup of a private service from outside the container.

    Private services can only be injected into other services. Mark the
    definition ``public=True`` or add a public alias to expose it.
    """

    def __init__(self, service_id: str) -> None:
        self.service_id = service_id
        super().__init__(
            f"Service '{service_id}' is private and cannot be fetched from the container.",
        )


class NotFoundError(DIForgeError):
    """Signal a lookup of an identifier with no definition or alias."""

    def __init__(self, service_id: str, *, known: Sequence[str] = ()) -> None:
        self.service_id = service_id
        msg = f"Service '{service_id}' is not defined."
        suggestions = [known_id for known_id in known if service_id.lower() in known_id.lower()]
        if suggestions:
            msg += f" Did you mean one of {sorted(suggestions)}?"
        super().__init__(msg)


__all__ = [
    "AccessError",
    "AmbiguousCandidateError",
    "CircularAliasError",
    "CircularParameterError",
    "CompilationError",
    "CyclicServiceGraphError",
    "DIForgeError",
    "InvalidDefinitionError",
    "NoCandidateError",
    "NotFoundError",
    "UnresolvedParameterError",
    "UnresolvedReferenceError",
]
