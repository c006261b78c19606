# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/tiers/base.py

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from iaasboot.config.models import NodeParams
from iaasboot.execution.runner import CommandRunner
from iaasboot.inject.injector import ConfigurationInjector
from iaasboot.inject.templates import TemplateRenderer
from iaasboot.packages.apt import AptClient
from iaasboot.services.systemd import ServiceBootstrapper
from iaasboot.storage.devices import DeviceProbe
from iaasboot.utils.hostfs import HostFS
from iaasboot.utils.retry import Clock

log = logging.getLogger("iaasboot")


@dataclass
class TierContext:
    """Host collaborators shared by every phase of one node's run."""

    params: NodeParams
    runner: CommandRunner
    fs: HostFS
    apt: AptClient
    services: ServiceBootstrapper
    renderer: TemplateRenderer
    injector: ConfigurationInjector
    clock: Optional[Clock] = None
    device_probe: Optional[DeviceProbe] = None


class TierInstaller(ABC):
    """
    Installs and configures the software of one role.

    Phases run in order: install -> prepare_storage -> configure -> start
    -> post_start. Each returns the actions it took; an empty list means
    the host already matched. Config files are always full overwrites.
    """

    name: str = "tier"

    def __init__(self, ctx: TierContext):
        self.ctx = ctx
        self.config_changed = False

    # ------------------ phases ------------------

    def repositories(self) -> List[Dict[str, str]]:
        return []

    @abstractmethod
    def packages(self) -> List[str]:
        ...

    def install(self) -> List[str]:
        return self.ctx.apt.reconcile(self.packages(), self.repositories())

    def prepare_storage(self) -> List[str]:
        return []

    @abstractmethod
    def configure(self) -> List[str]:
        ...

    @abstractmethod
    def start(self) -> List[str]:
        ...

    def post_start(self) -> List[str]:
        return []

    # ------------------ helpers ------------------

    def _track(self, actions: List[str]) -> List[str]:
        if actions:
            self.config_changed = True
        return actions
