"""Tests for tag collections and autoconfiguration."""

from __future__ import annotations

from typing import Protocol

import pytest

from diforge import (
    CompilationError,
    ContainerBuilder,
    DefinitionRegistry,
    InvalidDefinitionError,
    PassPhase,
    ServiceDefinition,
    Tag,
    TaggedCollection,
)
from diforge._internal.tags import TagIndex


class EventSubscriber(Protocol):
    def subscribed_events(self) -> list[str]: ...


class BaseSubscriber:
    def subscribed_events(self) -> list[str]:
        return []


class RouterSubscriber(BaseSubscriber):
    pass


class CacheSubscriber(BaseSubscriber):
    pass


class AuditSubscriber(BaseSubscriber):
    pass


class Dispatcher:
    def __init__(self, subscribers: list[BaseSubscriber]) -> None:
        self.subscribers = subscribers


class TestTaggedCollections:
    def test_order_by_priority_then_id(self, builder: ContainerBuilder) -> None:
        """Priority 10 comes first; the tied pair is ordered by id."""
        builder.register("b", CacheSubscriber, tags=[Tag("subscriber", {"priority": 5})])
        builder.register("a", AuditSubscriber, tags=[Tag("subscriber", {"priority": 5})])
        builder.register("top", RouterSubscriber, tags=[Tag("subscriber", {"priority": 10})])
        builder.register("dispatcher", Dispatcher, arguments=[TaggedCollection("subscriber")])

        container = builder.compile()
        dispatcher = container.get("dispatcher")

        assert dispatcher.subscribers == [
            container.get("top"),
            container.get("a"),
            container.get("b"),
        ]

    def test_missing_priority_defaults_to_zero(self, builder: ContainerBuilder) -> None:
        builder.register("low", CacheSubscriber, tags=[Tag("subscriber", {"priority": -1})])
        builder.register("plain", AuditSubscriber, tags=["subscriber"])
        builder.register("dispatcher", Dispatcher, arguments=[TaggedCollection("subscriber")])

        container = builder.compile()

        assert container.get("dispatcher").subscribers == [
            container.get("plain"),
            container.get("low"),
        ]

    def test_duplicate_tag_uses_highest_priority(self, builder: ContainerBuilder) -> None:
        """A service tagged twice appears once, at its highest priority."""
        builder.register(
            "twice",
            CacheSubscriber,
            tags=[Tag("subscriber", {"priority": 1}), Tag("subscriber", {"priority": 20})],
        )
        builder.register("once", AuditSubscriber, tags=[Tag("subscriber", {"priority": 10})])
        builder.register("dispatcher", Dispatcher, arguments=[TaggedCollection("subscriber")])

        container = builder.compile()

        assert container.get("dispatcher").subscribers == [
            container.get("twice"),
            container.get("once"),
        ]

    def test_empty_collection(self, builder: ContainerBuilder) -> None:
        builder.register("dispatcher", Dispatcher, arguments=[TaggedCollection("subscriber")])

        assert builder.compile().get("dispatcher").subscribers == []

    def test_private_members_survive_pruning(self, builder: ContainerBuilder) -> None:
        """Collection members are reachable even when nobody references them by id."""
        builder.register("hidden", CacheSubscriber, tags=["subscriber"], public=False)
        builder.register("dispatcher", Dispatcher, arguments=[TaggedCollection("subscriber")])

        container = builder.compile()

        assert len(container.get("dispatcher").subscribers) == 1
        assert container.definitions.has("hidden")

    def test_consumer_is_excluded_from_its_own_collection(self, builder: ContainerBuilder) -> None:
        builder.register(
            "dispatcher",
            Dispatcher,
            arguments=[TaggedCollection("subscriber")],
            tags=["subscriber"],
        )
        builder.register("router", RouterSubscriber, tags=["subscriber"])

        container = builder.compile()

        assert container.get("dispatcher").subscribers == [container.get("router")]

    def test_abstract_definitions_are_not_members(self, builder: ContainerBuilder) -> None:
        builder.register("template", abstract=True, tags=["subscriber"])
        builder.register("router", RouterSubscriber, parent="template")
        builder.register("dispatcher", Dispatcher, arguments=[TaggedCollection("subscriber")])

        container = builder.compile()

        assert container.get("dispatcher").subscribers == [container.get("router")]

    def test_non_numeric_priority_fails_compilation(self, builder: ContainerBuilder) -> None:
        builder.register("cache", CacheSubscriber, tags=[Tag("subscriber", {"priority": "high"})])

        with pytest.raises(CompilationError, match="priority must be a number") as exc_info:
            builder.compile()

        assert exc_info.value.service_id == "cache"
        assert exc_info.value.phase is PassPhase.BEFORE_OPTIMIZATION


class TestAutoconfiguration:
    def test_services_are_tagged_by_capability(self, builder: ContainerBuilder) -> None:
        builder.register_for_autoconfiguration(BaseSubscriber, "subscriber", priority=1)
        builder.register("router", RouterSubscriber)
        builder.register("cache", CacheSubscriber, tags=[Tag("subscriber", {"priority": 5})])
        builder.register("dispatcher", Dispatcher, arguments=[TaggedCollection("subscriber")])

        container = builder.compile()

        assert container.get("dispatcher").subscribers == [
            container.get("cache"),
            container.get("router"),
        ]

    def test_declared_capabilities_are_matched(self, builder: ContainerBuilder) -> None:
        """Protocols can be declared explicitly as capabilities."""
        builder.register_for_autoconfiguration(EventSubscriber, "subscriber")
        builder.register("router", RouterSubscriber, capabilities=[EventSubscriber])
        builder.register("cache", CacheSubscriber)
        builder.register("dispatcher", Dispatcher, arguments=[TaggedCollection("subscriber")])

        container = builder.compile()

        assert container.get("dispatcher").subscribers == [container.get("router")]

    def test_explicit_tag_wins_and_inferred_attributes_fill_gaps(self) -> None:
        registry = DefinitionRegistry()
        registry.add(
            ServiceDefinition(
                "router",
                RouterSubscriber,
                tags=[Tag("subscriber", {"priority": 7})],
            ),
        )
        index = TagIndex()
        index.register_for_autoconfiguration(
            BaseSubscriber,
            "subscriber",
            priority=1,
            channel="events",
        )

        index.rebuild(registry)

        assert registry.get("router").tags == [
            Tag("subscriber", {"priority": 7, "channel": "events"}),
        ]
        assert [entry.priority for entry in index.tagged("subscriber")] == [7]

    def test_rebuild_is_idempotent(self) -> None:
        registry = DefinitionRegistry()
        registry.add(ServiceDefinition("router", RouterSubscriber))
        registry.add(ServiceDefinition("cache", CacheSubscriber, abstract=True))
        index = TagIndex()
        index.register_for_autoconfiguration(BaseSubscriber, "subscriber")

        first = index.rebuild(registry)
        snapshot = registry.snapshot()
        second = index.rebuild(registry)

        assert first == second
        assert registry.snapshot() == snapshot
        assert index.tagged_ids("subscriber") == ["router"]
        assert registry.get("cache").tags == []

    def test_empty_tag_name_is_rejected(self, builder: ContainerBuilder) -> None:
        with pytest.raises(InvalidDefinitionError):
            builder.register_for_autoconfiguration(BaseSubscriber, "")
