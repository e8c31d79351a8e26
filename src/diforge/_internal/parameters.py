from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from typing import Any

from diforge.exceptions import (
    CircularParameterError,
    InvalidDefinitionError,
    UnresolvedParameterError,
)

_PLACEHOLDER = re.compile(r"%%|%([^%\s]+)%")
_WHOLE_PLACEHOLDER = re.compile(r"%([^%\s]+)%")


class ParameterBag:
    """Named configuration values with ``%name%`` interpolation.

    A string that is exactly ``"%name%"`` resolves to the referenced value with
    its own type. Placeholders embedded in longer strings are interpolated as
    text, and ``"%%"`` stands for a literal percent sign. Lists, tuples and
    dicts are resolved element by element.

    The bag becomes read-only once ``resolve_all`` has run.
    """

    def __init__(self, parameters: Mapping[str, Any] | None = None) -> None:
        self._raw: dict[str, Any] = dict(parameters or {})
        self._resolved: dict[str, Any] | None = None

    @property
    def frozen(self) -> bool:
        return self._resolved is not None

    def set(self, name: str, value: Any) -> None:
        if self._resolved is not None:
            msg = f"Cannot set parameter '{name}': parameters are already resolved."
            raise InvalidDefinitionError(msg)
        if not isinstance(name, str) or not name:
            msg = f"Parameter name must be a non-empty string, got {name!r}."
            raise InvalidDefinitionError(msg)
        self._raw[name] = value

    def remove(self, name: str) -> None:
        if self._resolved is not None:
            msg = f"Cannot remove parameter '{name}': parameters are already resolved."
            raise InvalidDefinitionError(msg)
        self._raw.pop(name, None)

    def has(self, name: str) -> bool:
        return name in self._raw

    def get(self, name: str) -> Any:
        """Return the resolved value when the bag is frozen, the raw value otherwise."""
        source = self._resolved if self._resolved is not None else self._raw
        try:
            return source[name]
        except KeyError:
            msg = f"Parameter '{name}' is not defined."
            raise UnresolvedParameterError(msg, parameter=name) from None

    def names(self) -> list[str]:
        return list(self._raw)

    def __iter__(self) -> Iterator[str]:
        return iter(self._raw)

    def __len__(self) -> int:
        return len(self._raw)

    def all(self) -> dict[str, Any]:
        source = self._resolved if self._resolved is not None else self._raw
        return dict(source)

    def copy(self) -> ParameterBag:
        bag = ParameterBag(self._raw)
        if self._resolved is not None:
            bag._resolved = dict(self._resolved)
        return bag

    def resolve_all(self) -> dict[str, Any]:
        """Resolve every parameter and freeze the bag.

        Raises:
            UnresolvedParameterError: If a placeholder names an unknown parameter.
            CircularParameterError: If a parameter references itself transitively.

        """
        if self._resolved is None:
            resolved: dict[str, Any] = {}
            for name in self._raw:
                resolved[name] = self._resolve_parameter(name, resolved, ())
            self._resolved = resolved
        return dict(self._resolved)

    def resolve_value(self, value: Any) -> Any:
        """Resolve placeholders in an arbitrary value against the frozen bag."""
        resolved = self.resolve_all()
        return self._resolve(value, resolved, ())

    def _resolve_parameter(
        self,
        name: str,
        resolved: dict[str, Any],
        chain: tuple[str, ...],
    ) -> Any:
        if name in resolved:
            return resolved[name]
        if name in chain:
            raise CircularParameterError((*chain[chain.index(name) :], name))
        if name not in self._raw:
            if chain:
                msg = f"Parameter '{chain[-1]}' references undefined parameter '{name}'."
            else:
                msg = f"Parameter '{name}' is not defined."
            raise UnresolvedParameterError(msg, parameter=name)

        value = self._resolve(self._raw[name], resolved, (*chain, name))
        resolved[name] = value
        return value

    def _resolve(self, value: Any, resolved: dict[str, Any], chain: tuple[str, ...]) -> Any:
        if isinstance(value, str):
            return self._resolve_string(value, resolved, chain)
        if isinstance(value, list):
            return [self._resolve(item, resolved, chain) for item in value]
        if isinstance(value, tuple):
            return tuple(self._resolve(item, resolved, chain) for item in value)
        if isinstance(value, dict):
            return {
                self._resolve(key, resolved, chain): self._resolve(item, resolved, chain)
                for key, item in value.items()
            }
        return value

    def _resolve_string(self, value: str, resolved: dict[str, Any], chain: tuple[str, ...]) -> Any:
        whole = _WHOLE_PLACEHOLDER.fullmatch(value)
        if whole is not None:
            return self._resolve_parameter(whole.group(1), resolved, chain)

        def _substitute(match: re.Match[str]) -> str:
            if match.group(0) == "%%":
                return "%"
            replacement = self._resolve_parameter(match.group(1), resolved, chain)
            if not isinstance(replacement, str | int | float):
                msg = (
                    f"Parameter '{match.group(1)}' of type {type(replacement).__name__} cannot "
                    f"be interpolated into string {value!r}."
                )
                raise UnresolvedParameterError(msg, parameter=match.group(1))
            return str(replacement)

        return _PLACEHOLDER.sub(_substitute, value)


__all__ = ["ParameterBag"]
