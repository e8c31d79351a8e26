from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Protocol, TypeAlias, runtime_checkable

from diforge._internal.registry import DefinitionRegistry
from diforge.exceptions import CompilationError, InvalidDefinitionError

logger = logging.getLogger(__name__)


class PassPhase(IntEnum):
    """Compilation phases, in execution order."""

    BEFORE_OPTIMIZATION = 0
    """Prepare the graph: parameters, templates, autoconfiguration, autowiring."""

    OPTIMIZE = 1
    """Rewrite references: aliases and tagged collections."""

    BEFORE_REMOVING = 2
    """Validate the graph. Passes in this phase must not mutate it."""

    REMOVE = 3
    """Prune everything unreachable from public services."""

    AFTER_REMOVING = 4
    """Final rewrites over the pruned graph, such as inlining."""


@runtime_checkable
class CompilerPass(Protocol):
    """A graph transformation run once per compilation."""

    def process(self, graph: DefinitionRegistry) -> DefinitionRegistry | None:
        """Transform ``graph`` and return it, a replacement, or ``None`` when edited in place.

        Args:
            graph: The working definition graph, owned by the pipeline.

        """


PassCallable: TypeAlias = Callable[[DefinitionRegistry], "DefinitionRegistry | None"]


@dataclass(frozen=True, slots=True)
class RegisteredPass:
    """A compiler pass with its scheduling metadata."""

    compiler_pass: CompilerPass | PassCallable
    phase: PassPhase
    priority: int
    sequence: int = field(compare=False)

    @property
    def name(self) -> str:
        target = self.compiler_pass
        if not isinstance(target, CompilerPass):
            return getattr(target, "__qualname__", repr(target))
        return type(target).__qualname__

    def run(self, graph: DefinitionRegistry) -> DefinitionRegistry:
        target = self.compiler_pass
        if isinstance(target, CompilerPass):
            result = target.process(graph)
        else:
            result = target(graph)
        return graph if result is None else result


class PassPipeline:
    """Ordered compiler passes, grouped by phase and sorted by priority.

    Within a phase passes run by descending priority; passes sharing a
    priority run in registration order.
    """

    def __init__(self, passes: Iterable[RegisteredPass] = ()) -> None:
        self._passes: list[RegisteredPass] = list(passes)
        self._sequence = max((registered.sequence for registered in self._passes), default=-1) + 1

    def add(
        self,
        compiler_pass: CompilerPass | PassCallable,
        phase: PassPhase = PassPhase.BEFORE_OPTIMIZATION,
        priority: int = 0,
    ) -> RegisteredPass:
        if not isinstance(compiler_pass, CompilerPass) and not callable(compiler_pass):
            msg = (
                f"Compiler pass must define process(graph) or be callable, got {compiler_pass!r}."
            )
            raise InvalidDefinitionError(msg)
        if not isinstance(phase, PassPhase):
            msg = f"Compiler pass phase must be a PassPhase, got {phase!r}."
            raise InvalidDefinitionError(msg)
        registered = RegisteredPass(compiler_pass, phase, int(priority), self._sequence)
        self._sequence += 1
        self._passes.append(registered)
        return registered

    def copy(self) -> PassPipeline:
        return PassPipeline(self._passes)

    def passes(self, phase: PassPhase | None = None) -> list[RegisteredPass]:
        """Return passes in execution order, optionally for one phase only."""
        ordered = sorted(
            self._passes,
            key=lambda registered: (registered.phase, -registered.priority, registered.sequence),
        )
        if phase is None:
            return ordered
        return [registered for registered in ordered if registered.phase is phase]

    def __len__(self) -> int:
        return len(self._passes)

    def run(self, graph: DefinitionRegistry) -> DefinitionRegistry:
        """Run every phase to completion, in order, and return the final graph.

        Raises:
            CompilationError: On the first failure; ``phase`` is always filled in.

        """
        for phase in PassPhase:
            for registered in self.passes(phase):
                graph = self._run_pass(registered, graph)
        return graph

    def _run_pass(
        self,
        registered: RegisteredPass,
        graph: DefinitionRegistry,
    ) -> DefinitionRegistry:
        phase = registered.phase
        logger.debug(
            "Running compiler pass %s (phase=%s, priority=%d)",
            registered.name,
            phase.name,
            registered.priority,
        )
        before = graph.snapshot() if phase is PassPhase.BEFORE_REMOVING else None
        try:
            result = registered.run(graph)
        except CompilationError as error:
            if error.phase is None:
                error.phase = phase
            raise

        if not isinstance(result, DefinitionRegistry):
            msg = (
                f"Compiler pass {registered.name} returned {type(result).__name__}; expected "
                "a DefinitionRegistry or None."
            )
            raise CompilationError(msg, phase=phase)
        if before is not None and (result is not graph or result.snapshot() != before):
            msg = f"Validation pass {registered.name} modified the definition graph."
            raise CompilationError(msg, phase=phase)
        return result


__all__ = ["CompilerPass", "PassCallable", "PassPhase", "PassPipeline", "RegisteredPass"]
