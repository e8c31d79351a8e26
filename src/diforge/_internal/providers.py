from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from diforge._internal.builder import ContainerBuilder


class ServiceProvider:
    """Extension point that contributes definitions and compiler passes.

    Providers are booted by ``ContainerBuilder.compile``: first every
    provider's ``register`` runs, then every provider's ``alter``. Use
    ``register`` to add definitions, parameters and compiler passes, and
    ``alter`` to adjust definitions contributed by other providers.

    Examples:
        .. code-block:: python

            class MailerProvider(ServiceProvider):
                def register(self, builder: ContainerBuilder) -> None:
                    builder.register("mailer", Mailer, arguments=[ParameterReference("dsn")])
                    builder.add_compiler_pass(CollectTransportsPass(), PassPhase.OPTIMIZE)

                def alter(self, builder: ContainerBuilder) -> None:
                    if builder.registry.has("logger"):
                        builder.registry.get("mailer").keyword_arguments["logger"] = (
                            ServiceReference("logger")
                        )

    """

    def register(self, builder: ContainerBuilder) -> None:
        """Add definitions, parameters and compiler passes."""

    def alter(self, builder: ContainerBuilder) -> None:
        """Adjust the registry after every provider has registered."""


__all__ = ["ServiceProvider"]
