# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/services/health.py

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Protocol

import requests

log = logging.getLogger("iaasboot")


class HealthCheck(Protocol):
    def check(self) -> bool: ...
    def describe(self) -> str: ...


@dataclass(frozen=True)
class HttpHealthCheck:
    """Local HTTP endpoint answering 2xx when the service is healthy."""
    url: str
    timeout: float = 3.0

    def check(self) -> bool:
        try:
            resp = requests.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            log.debug(f"[health] {self.url}: {e}")
            return False
        return 200 <= resp.status_code < 300

    def describe(self) -> str:
        return f"GET {self.url}"


@dataclass(frozen=True)
class TcpHealthCheck:
    """Local socket accepting connections."""
    host: str
    port: int
    timeout: float = 3.0

    def check(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError as e:
            log.debug(f"[health] {self.host}:{self.port}: {e}")
            return False

    def describe(self) -> str:
        return f"tcp://{self.host}:{self.port}"
