"""Tests for service providers."""

from __future__ import annotations

import pytest

from diforge import (
    ContainerBuilder,
    DefinitionRegistry,
    InvalidDefinitionError,
    ParameterReference,
    PassPhase,
    ServiceProvider,
    ServiceReference,
)


class Mailer:
    def __init__(self, dsn: str, logger: object = None) -> None:
        self.dsn = dsn
        self.logger = logger


class Logger:
    pass


class MailerProvider(ServiceProvider):
    def __init__(self, calls: list[str]) -> None:
        self.calls = calls

    def register(self, builder: ContainerBuilder) -> None:
        self.calls.append("mailer.register")
        builder.set_parameter("mailer.dsn", "smtp://localhost")
        builder.register("mailer", Mailer, arguments=[ParameterReference("mailer.dsn")])

    def alter(self, builder: ContainerBuilder) -> None:
        self.calls.append("mailer.alter")
        if builder.registry.has("logger"):
            builder.registry.get("mailer").keyword_arguments["logger"] = ServiceReference("logger")


class LoggerProvider(ServiceProvider):
    def __init__(self, calls: list[str]) -> None:
        self.calls = calls

    def register(self, builder: ContainerBuilder) -> None:
        self.calls.append("logger.register")
        builder.register("logger", Logger)


class TestProviders:
    def test_every_register_runs_before_any_alter(self, builder: ContainerBuilder) -> None:
        calls: list[str] = []
        builder.add_provider(MailerProvider(calls))
        builder.add_provider(LoggerProvider(calls))

        container = builder.compile()

        assert calls == ["mailer.register", "logger.register", "mailer.alter"]
        mailer = container.get("mailer")
        assert mailer.dsn == "smtp://localhost"
        assert mailer.logger is container.get("logger")

    def test_providers_boot_once(self, builder: ContainerBuilder) -> None:
        calls: list[str] = []
        builder.add_provider(MailerProvider(calls))

        builder.compile()
        builder.compile()

        assert calls == ["mailer.register", "mailer.alter"]

    def test_providers_added_later_boot_on_next_compile(self, builder: ContainerBuilder) -> None:
        calls: list[str] = []
        builder.add_provider(MailerProvider(calls))
        builder.compile()

        builder.add_provider(LoggerProvider(calls))
        container = builder.compile()

        assert calls == ["mailer.register", "mailer.alter", "logger.register"]
        assert container.has("logger")

    def test_providers_can_add_providers(self, builder: ContainerBuilder) -> None:
        calls: list[str] = []

        class BundleProvider(ServiceProvider):
            def register(self, builder: ContainerBuilder) -> None:
                builder.add_provider(LoggerProvider(calls))

        builder.add_provider(BundleProvider())

        assert builder.compile().has("logger")
        assert calls == ["logger.register"]

    def test_providers_can_add_compiler_passes(self, builder: ContainerBuilder) -> None:
        seen: list[str] = []

        class InspectingProvider(ServiceProvider):
            def register(self, builder: ContainerBuilder) -> None:
                builder.register("logger", Logger)
                builder.add_compiler_pass(self.inspect, PassPhase.AFTER_REMOVING)

            def inspect(self, graph: DefinitionRegistry) -> None:
                seen.extend(graph.ids())

        builder.add_provider(InspectingProvider())
        builder.compile()

        assert seen == ["logger"]

    def test_non_provider_is_rejected(self, builder: ContainerBuilder) -> None:
        with pytest.raises(InvalidDefinitionError, match="Expected a ServiceProvider"):
            builder.add_provider(object())  # type: ignore[arg-type]
