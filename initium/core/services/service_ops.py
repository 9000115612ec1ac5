"""
Service operations — install and configure managed services through the
operation engine.

Installers and configurers are opaque callables registered per service;
the core only knows their outcome. A service whose tool already probes
as installed succeeds without calling the installer.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from initium.core.engine.operations import OperationContext, OperationStateMachine
from initium.core.errors import ExternalActionError
from initium.core.models.operation import OperationKind, OperationRecord
from initium.core.services.service_status import ServiceStatusCache
from initium.core.services.tool_probe import ToolProbe

logger = logging.getLogger(__name__)


class ServiceType(StrEnum):
    """Services Initium knows how to manage."""

    HOMEBREW = "homebrew"
    GIT = "git"

    @property
    def tool(self) -> str:
        """Executable probed to decide whether the service is present."""
        return {"homebrew": "brew", "git": "git"}[self.value]

    @property
    def display_name(self) -> str:
        return {"homebrew": "Homebrew", "git": "Git"}[self.value]

    @property
    def description(self) -> str:
        return {
            "homebrew": "Package manager for macOS",
            "git": "Version control system",
        }[self.value]


class ServiceConfiguration(BaseModel):
    """Result of a configure operation."""

    model_config = ConfigDict(frozen=True)

    service_type: ServiceType
    settings: dict[str, str] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))


Installer = Callable[[OperationContext], Any]
Configurer = Callable[[dict[str, str], OperationContext], Any]


class ServiceManager:
    """High-level service management interface.

    Args:
        machine: Shared operation engine.
        status_cache: Invalidated after a successful install.
        installers: Opaque install actions per service.
        configurers: Opaque configure actions per service.
        probe: Used to skip installs of tools already present.
        log: Logging sink (default: this module's logger).
    """

    def __init__(
        self,
        machine: OperationStateMachine,
        status_cache: ServiceStatusCache | None = None,
        *,
        installers: dict[ServiceType, Installer] | None = None,
        configurers: dict[ServiceType, Configurer] | None = None,
        probe: Callable | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.machine = machine
        self.status_cache = status_cache
        self.installers = dict(installers or {})
        self.configurers = dict(configurers or {})
        self._probe = probe or ToolProbe()
        self._log = log or logger

    def available_services(self) -> list[ServiceType]:
        return list(ServiceType)

    def install_service(self, service: ServiceType) -> Future[OperationRecord]:
        """Install ``service`` unless its tool is already present."""
        service = ServiceType(service)
        self._log.info("Installing service: %s", service.value)

        def perform(ctx: OperationContext) -> dict[str, Any]:
            if self._probe(service.tool).installed:
                self._log.info("%s already installed", service.display_name)
                return {"service": service.value, "already_installed": True}

            installer = self.installers.get(service)
            if installer is None:
                raise ExternalActionError(
                    f"No installer is available for {service.display_name}"
                )
            ctx.checkpoint()
            outcome = installer(ctx)
            if self.status_cache is not None:
                self.status_cache.invalidate()
            return {"service": service.value, "already_installed": False, "outcome": outcome}

        return self.machine.start(
            OperationKind.SERVICE_INSTALL,
            perform,
            payload={"service": service.value},
            supersede=True,
        )

    def configure_service(
        self,
        service: ServiceType,
        settings: dict[str, str],
    ) -> Future[OperationRecord]:
        """Apply ``settings`` to ``service``; the result is a ServiceConfiguration."""
        service = ServiceType(service)
        self._log.info("Configuring service: %s", service.value)

        def perform(ctx: OperationContext) -> ServiceConfiguration:
            configurer = self.configurers.get(service)
            if configurer is not None:
                configurer(dict(settings), ctx)
            ctx.checkpoint()
            return ServiceConfiguration(service_type=service, settings=settings)

        return self.machine.start(
            OperationKind.SERVICE_CONFIGURE,
            perform,
            payload={"service": service.value},
            supersede=True,
        )
