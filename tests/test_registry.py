"""Tests for DefinitionRegistry."""

from __future__ import annotations

import pytest

from diforge import (
    CircularAliasError,
    DefinitionRegistry,
    InvalidDefinitionError,
    LiteralValue,
    NotFoundError,
    ServiceDefinition,
    ServiceReference,
    Tag,
    UnresolvedReferenceError,
)


class Mailer:
    pass


class TestDefinitions:
    def test_add_and_get(self, registry: DefinitionRegistry) -> None:
        """A stored definition can be fetched back by id."""
        definition = registry.add(ServiceDefinition("mailer", Mailer))

        assert registry.get("mailer") is definition
        assert registry.has("mailer")
        assert "mailer" in registry
        assert len(registry) == 1

    def test_last_writer_wins(self, registry: DefinitionRegistry) -> None:
        """Adding the same id twice keeps the second definition."""
        registry.add(ServiceDefinition("mailer", Mailer, arguments=["smtp"]))
        registry.add(ServiceDefinition("other", Mailer))
        override = registry.add(ServiceDefinition("mailer", Mailer, arguments=["sendmail"]))

        assert registry.get("mailer") is override
        assert registry.get("mailer").arguments == [LiteralValue("sendmail")]
        assert registry.ids() == ["other", "mailer"]

    def test_get_unknown_raises_not_found_with_suggestions(
        self,
        registry: DefinitionRegistry,
    ) -> None:
        """Unknown ids raise NotFoundError listing similar ids."""
        registry.add(ServiceDefinition("app.mailer", Mailer))

        with pytest.raises(NotFoundError, match="Did you mean") as exc_info:
            registry.get("mailer")

        assert exc_info.value.service_id == "mailer"

    def test_remove_is_idempotent(self, registry: DefinitionRegistry) -> None:
        """Removing a missing id does nothing."""
        registry.add(ServiceDefinition("mailer", Mailer))

        registry.remove("mailer")
        registry.remove("mailer")

        assert not registry.has("mailer")
        assert registry.find("mailer") is None

    def test_add_rejects_non_definitions(self, registry: DefinitionRegistry) -> None:
        """Only ServiceDefinition objects can be added."""
        with pytest.raises(InvalidDefinitionError):
            registry.add("mailer")  # type: ignore[arg-type]

    def test_find_tagged_by_returns_every_occurrence(self, registry: DefinitionRegistry) -> None:
        """A definition tagged twice appears twice, in registration order."""
        registry.add(
            ServiceDefinition(
                "a",
                Mailer,
                tags=[Tag("listener", {"event": "start"}), Tag("listener", {"event": "stop"})],
            ),
        )
        registry.add(ServiceDefinition("b", Mailer, tags=["listener"]))

        assert registry.find_tagged_by("listener") == [
            ("a", {"event": "start"}),
            ("a", {"event": "stop"}),
            ("b", {}),
        ]
        assert registry.find_tagged_by("missing") == []
        assert registry.tag_names() == ["listener"]


class TestAliases:
    def test_resolve_alias_is_transitive(self, registry: DefinitionRegistry) -> None:
        """Alias chains resolve to the final identifier."""
        registry.add(ServiceDefinition("mailer.smtp", Mailer))
        registry.set_alias("mailer", "mailer.default")
        registry.set_alias("mailer.default", "mailer.smtp")

        assert registry.resolve_alias("mailer") == "mailer.smtp"
        assert registry.resolve_alias("mailer.smtp") == "mailer.smtp"
        assert registry.resolve_alias_strict("mailer") == "mailer.smtp"

    def test_alias_cycle_raises(self, registry: DefinitionRegistry) -> None:
        """Aliases pointing at each other raise CircularAliasError."""
        registry.set_alias("a", "b")
        registry.set_alias("b", "a")

        with pytest.raises(CircularAliasError) as exc_info:
            registry.resolve_alias("a")

        assert exc_info.value.chain == ("a", "b", "a")

    def test_alias_to_missing_definition_fails_strict_resolution(
        self,
        registry: DefinitionRegistry,
    ) -> None:
        """Strict resolution requires a real definition at the end of the chain."""
        registry.set_alias("mailer", "missing")

        assert registry.resolve_alias("mailer") == "missing"
        with pytest.raises(UnresolvedReferenceError):
            registry.resolve_alias_strict("mailer")

    def test_alias_and_definition_share_a_namespace(self, registry: DefinitionRegistry) -> None:
        """Definitions replace aliases with the same id and vice versa."""
        registry.add(ServiceDefinition("target", Mailer))
        registry.set_alias("mailer", "target")
        registry.add(ServiceDefinition("mailer", Mailer))

        assert not registry.has_alias("mailer")
        assert registry.has("mailer")

        registry.set_alias("mailer", "target")

        assert registry.has_alias("mailer")
        assert not registry.has("mailer")

    def test_self_alias_is_rejected(self, registry: DefinitionRegistry) -> None:
        with pytest.raises(InvalidDefinitionError):
            registry.set_alias("mailer", "mailer")


class TestCopies:
    def test_copy_is_independent(self, registry: DefinitionRegistry) -> None:
        """Mutating a copy leaves the original untouched."""
        registry.add(ServiceDefinition("mailer", Mailer, arguments=[ServiceReference("transport")]))
        registry.set_parameter("dsn", "smtp://localhost")

        copy = registry.copy()
        copy.get("mailer").arguments.append(LiteralValue(1))
        copy.remove("mailer")
        copy.set_alias("alias", "mailer")

        assert registry.get("mailer").arguments == [ServiceReference("transport")]
        assert not registry.has_alias("alias")
        assert copy.get_parameter("dsn") == "smtp://localhost"

    def test_snapshot_detects_changes(self, registry: DefinitionRegistry) -> None:
        """Snapshots compare equal until the structure changes."""
        registry.add(ServiceDefinition("mailer", Mailer))
        before = registry.snapshot()

        assert registry.copy().snapshot() == before

        registry.get("mailer").public = False

        assert registry.snapshot() != before


class TestDefinitionValidation:
    def test_empty_id_is_rejected(self) -> None:
        with pytest.raises(InvalidDefinitionError):
            ServiceDefinition("", Mailer)

    def test_non_callable_factory_is_rejected(self) -> None:
        with pytest.raises(InvalidDefinitionError, match="must be callable"):
            ServiceDefinition("mailer", "Mailer")  # type: ignore[arg-type]

    def test_unsupported_argument_is_rejected(self) -> None:
        """Arbitrary objects must be wrapped explicitly."""
        with pytest.raises(InvalidDefinitionError, match="LiteralValue"):
            ServiceDefinition("mailer", Mailer, arguments=[object()])

    def test_plain_values_are_wrapped(self) -> None:
        """Literals and tag names are coerced into argument and tag objects."""
        definition = ServiceDefinition(
            "mailer",
            Mailer,
            arguments=["smtp", 25, None],
            keyword_arguments={"hosts": ["a", "b"]},
            tags=["mailer.transport"],
        )

        assert definition.arguments == [
            LiteralValue("smtp"),
            LiteralValue(25),
            LiteralValue(None),
        ]
        assert definition.keyword_arguments == {"hosts": LiteralValue(["a", "b"])}
        assert definition.tags == [Tag("mailer.transport")]

    def test_non_numeric_priority_is_rejected(self) -> None:
        with pytest.raises(InvalidDefinitionError, match="priority"):
            _ = Tag("listener", {"priority": "high"}).priority
