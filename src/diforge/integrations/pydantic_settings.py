from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any

from diforge.exceptions import InvalidDefinitionError

if TYPE_CHECKING:
    from diforge._internal.builder import ContainerBuilder

logger = logging.getLogger(__name__)


def _load_base_settings(module_name: str) -> type[Any] | None:
    try:
        module = importlib.import_module(module_name)
    except ImportError:
        return None
    base_settings = getattr(module, "BaseSettings", None)
    if isinstance(base_settings, type):
        return base_settings
    return None


def _load_base_model() -> type[Any] | None:
    try:
        module = importlib.import_module("pydantic")
    except ImportError:
        return None
    base_model = getattr(module, "BaseModel", None)
    if isinstance(base_model, type):
        return base_model
    return None


SETTINGS_BASE: type[Any] | None = _load_base_settings("pydantic_settings")
MODEL_BASE: type[Any] | None = _load_base_model()


def is_pydantic_settings_subclass(candidate: object) -> bool:
    """Return true when candidate subclasses ``pydantic_settings.BaseSettings``."""
    if not isinstance(candidate, type) or SETTINGS_BASE is None:
        return False
    return issubclass(candidate, SETTINGS_BASE)


def settings_to_parameters(settings: Any, prefix: str = "") -> dict[str, Any]:
    """Flatten a settings object into parameter names and values.

    Nested models are flattened with dots: ``Settings(db=Db(host="x"))``
    yields ``{"db.host": "x"}``. Percent signs in strings are escaped so that
    values are never interpolated as placeholders.

    Args:
        settings: A pydantic-settings ``BaseSettings`` instance.
        prefix: Prepended to every parameter name, dot-separated.

    Returns:
        Parameter values keyed by their flattened names, in field order.

    """
    parameters: dict[str, Any] = {}
    _flatten(settings, prefix, parameters)
    return parameters


def add_settings_parameters(
    builder: ContainerBuilder,
    settings: Any,
    prefix: str = "",
) -> dict[str, Any]:
    """Register every field of ``settings`` as a builder parameter.

    ``settings`` may be a ``BaseSettings`` instance or subclass; subclasses
    are instantiated, which reads the environment.

    Args:
        builder: Builder receiving the parameters.
        settings: Settings instance or class.
        prefix: Prepended to every parameter name, dot-separated.

    Returns:
        The parameters that were set.

    Raises:
        InvalidDefinitionError: If pydantic-settings is not installed or
            ``settings`` is not a ``BaseSettings``.

    Examples:
        .. code-block:: python

            class Settings(BaseSettings):
                dsn: str = "sqlite://"

            add_settings_parameters(builder, Settings, prefix="app")
            builder.register("db", Database, arguments=[ParameterReference("app.dsn")])

    """
    if SETTINGS_BASE is None:
        msg = "pydantic-settings is not installed. Install diforge[pydantic-settings]."
        raise InvalidDefinitionError(msg)
    if isinstance(settings, type) and is_pydantic_settings_subclass(settings):
        settings = settings()
    if not is_pydantic_settings_subclass(type(settings)):
        msg = f"Expected a pydantic-settings BaseSettings, got {type(settings).__name__}."
        raise InvalidDefinitionError(msg)

    parameters = settings_to_parameters(settings, prefix)
    for name, value in parameters.items():
        builder.set_parameter(name, value)
    logger.debug(
        "Loaded %d parameters from %s",
        len(parameters),
        type(settings).__qualname__,
    )
    return parameters


def _flatten(model: Any, prefix: str, parameters: dict[str, Any]) -> None:
    for field_name in type(model).model_fields:
        name = f"{prefix}.{field_name}" if prefix else field_name
        value = getattr(model, field_name)
        if MODEL_BASE is not None and isinstance(value, MODEL_BASE):
            _flatten(value, name, parameters)
        else:
            parameters[name] = _escape(value)


def _escape(value: Any) -> Any:
    if isinstance(value, str):
        return value.replace("%", "%%")
    if isinstance(value, list):
        return [_escape(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_escape(item) for item in value)
    if isinstance(value, dict):
        return {_escape(key): _escape(item) for key, item in value.items()}
    return value


__all__ = [
    "MODEL_BASE",
    "SETTINGS_BASE",
    "add_settings_parameters",
    "is_pydantic_settings_subclass",
    "settings_to_parameters",
]
