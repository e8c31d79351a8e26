"""Tests for parameter interpolation and freezing."""

from __future__ import annotations

import pytest

from diforge import (
    CircularParameterError,
    CompilationError,
    ContainerBuilder,
    InvalidDefinitionError,
    ParameterReference,
    UnresolvedParameterError,
)
from diforge._internal.parameters import ParameterBag
from diforge._internal.pipeline import PassPhase


class Client:
    def __init__(self, dsn: str, timeout: float = 1.0) -> None:
        self.dsn = dsn
        self.timeout = timeout


class TestParameterBag:
    def test_whole_placeholder_keeps_type(self) -> None:
        """A value that is exactly one placeholder resolves to the referenced value itself."""
        bag = ParameterBag({"timeout": 2.5, "retry.timeout": "%timeout%", "hosts": ["a", "b"]})
        bag.set("all_hosts", "%hosts%")

        resolved = bag.resolve_all()

        assert resolved["retry.timeout"] == 2.5
        assert resolved["all_hosts"] == ["a", "b"]

    def test_embedded_placeholders_are_interpolated(self) -> None:
        bag = ParameterBag({"host": "localhost", "port": 5432, "dsn": "pg://%host%:%port%/db"})

        assert bag.resolve_all()["dsn"] == "pg://localhost:5432/db"

    def test_double_percent_escapes(self) -> None:
        """"%%" yields a literal percent sign and is never a placeholder."""
        bag = ParameterBag({"ratio": "100%% of %unit%", "unit": "requests"})

        assert bag.resolve_all()["ratio"] == "100% of requests"

    def test_nested_containers_are_resolved(self) -> None:
        bag = ParameterBag(
            {
                "env": "prod",
                "settings": {"name": "app-%env%", "tags": ["%env%", ("x", "%env%")]},
            },
        )

        assert bag.resolve_all()["settings"] == {
            "name": "app-prod",
            "tags": ["prod", ("x", "prod")],
        }

    def test_chains_resolve_recursively(self) -> None:
        bag = ParameterBag({"a": "%b%", "b": "%c%/x", "c": "root"})

        assert bag.resolve_all() == {"a": "root/x", "b": "root/x", "c": "root"}

    def test_self_reference_names_the_chain(self) -> None:
        """A looping chain raises CircularParameterError naming every parameter in the loop."""
        bag = ParameterBag({"a": "%b%", "b": "prefix-%c%", "c": "%a%"})

        with pytest.raises(CircularParameterError) as exc_info:
            bag.resolve_all()

        assert exc_info.value.chain == ("a", "b", "c", "a")
        assert "a -> b -> c -> a" in str(exc_info.value)

    def test_undefined_reference_raises(self) -> None:
        bag = ParameterBag({"dsn": "pg://%host%"})

        with pytest.raises(UnresolvedParameterError) as exc_info:
            bag.resolve_all()

        assert exc_info.value.parameter == "host"

    def test_non_scalar_cannot_be_embedded(self) -> None:
        bag = ParameterBag({"hosts": ["a"], "label": "hosts=%hosts%"})

        with pytest.raises(UnresolvedParameterError, match="cannot be interpolated"):
            bag.resolve_all()

    def test_bag_is_frozen_after_resolution(self) -> None:
        bag = ParameterBag({"a": "%b%", "b": 1})
        bag.resolve_all()

        assert bag.frozen
        assert bag.get("a") == 1
        with pytest.raises(InvalidDefinitionError):
            bag.set("c", 2)
        with pytest.raises(InvalidDefinitionError):
            bag.remove("a")

    def test_get_before_resolution_returns_raw_value(self) -> None:
        bag = ParameterBag({"a": "%b%", "b": 1})

        assert bag.get("a") == "%b%"
        assert bag.resolve_value(["%a%", "x"]) == [1, "x"]


class TestParameterReferences:
    def test_references_are_replaced_before_construction(self, builder: ContainerBuilder) -> None:
        builder.set_parameter("db.host", "localhost")
        builder.set_parameter("db.dsn", "pg://%db.host%")
        builder.set_parameter("db.timeout", 3)
        builder.register(
            "client",
            Client,
            arguments=[ParameterReference("db.dsn")],
            keyword_arguments={"timeout": ParameterReference("db.timeout")},
        )

        client = builder.compile().get("client")

        assert client.dsn == "pg://localhost"
        assert client.timeout == 3

    def test_undefined_parameter_fails_compilation(self, builder: ContainerBuilder) -> None:
        """The error names the consumer and the missing parameter."""
        builder.register("client", Client, arguments=[ParameterReference("db.dsn")])

        with pytest.raises(UnresolvedParameterError) as exc_info:
            builder.compile()

        assert exc_info.value.parameter == "db.dsn"
        assert exc_info.value.service_id == "client"
        assert exc_info.value.phase is PassPhase.BEFORE_OPTIMIZATION

    def test_circular_parameters_fail_compilation(self, builder: ContainerBuilder) -> None:
        builder.set_parameter("a", "%b%")
        builder.set_parameter("b", "%a%")

        with pytest.raises(CompilationError, match="Circular parameter reference"):
            builder.compile()

    def test_builder_parameters_stay_editable_after_compile(
        self,
        builder: ContainerBuilder,
    ) -> None:
        """Only the compiled copy of the parameters is frozen."""
        builder.set_parameter("a", 1)
        builder.compile()

        builder.set_parameter("a", 2)

        assert builder.registry.get_parameter("a") == 2
