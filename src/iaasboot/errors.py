# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/errors.py

from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Base class for fatal provisioning failures.

    ``diagnostics`` holds whatever context an operator needs to debug the
    failure from the extension status output alone (device listings, mount
    table, service log tail...).
    """

    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message)
        self.diagnostics = diagnostics


class CommandError(ProvisioningError):
    """Raised when a checked command exits non-zero."""

    def __init__(self, cmd: str, returncode: int, stdout: str = "", stderr: str = ""):
        tail = "\n".join((stderr or stdout).strip().splitlines()[-20:])
        super().__init__(f"command failed (rc={returncode}): {cmd}", diagnostics=tail)
        self.cmd = cmd
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class LockTimeoutError(ProvisioningError):
    """Package manager locks stayed held past the timeout."""


class VolumeError(ProvisioningError):
    """No usable data volume, or it could not be mounted."""


class TemplateRenderError(ProvisioningError):
    """A template could not be rendered or left placeholders unresolved."""


class ServiceStartError(ProvisioningError):
    """A service did not reach the running state."""


class ReplicaSetError(ProvisioningError):
    """Replica set initiation or election failed."""
