# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/inject/sinks.py

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Set

from iaasboot.errors import TemplateRenderError
from iaasboot.utils.hostfs import HostFS

from .templates import TemplateRenderer, unresolved_placeholders

BEGIN_MARKER = "# BEGIN iaasboot managed block"
END_MARKER = "# END iaasboot managed block"

_NEEDS_QUOTES = re.compile(r"[\s#'\"\\$`]")


@dataclass
class ConfigurationBundle:
    """
    Key/value pairs destined for one or more sinks. Regenerated in full on
    every run; ``secret_keys`` decides which values are masked and which
    sinks may receive them.
    """
    values: Dict[str, str]
    secret_keys: Set[str] = field(default_factory=set)

    def select(self, keys: Optional[Iterable[str]]) -> Dict[str, str]:
        if keys is None:
            return dict(self.values)
        return {k: self.values[k] for k in keys}

    def public(self) -> Dict[str, str]:
        return {k: v for k, v in self.values.items() if k not in self.secret_keys}

    def secrets(self) -> List[str]:
        return [self.values[k] for k in self.secret_keys if self.values.get(k)]

    def redacted(self) -> Dict[str, str]:
        return {k: ("********" if k in self.secret_keys else v) for k, v in self.values.items()}


class Sink(Protocol):
    path: str
    def render(self, bundle: ConfigurationBundle, current: Optional[str]) -> str: ...
    def write(self, bundle: ConfigurationBundle, fs: HostFS) -> bool: ...


def _check_values(path: str, values: Mapping[str, Any]) -> None:
    for k, v in values.items():
        if v is None or v == "":
            raise TemplateRenderError(f"{path}: no value provided for {k}")
        if unresolved_placeholders(str(v)):
            raise TemplateRenderError(f"{path}: value of {k} is an unresolved placeholder")


def _env_line(key: str, value: str) -> str:
    if _NEEDS_QUOTES.search(value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'{key}="{escaped}"'
    return f"{key}={value}"


@dataclass
class EnvironmentFileSink:
    """
    Process-wide environment file (/etc/environment). Only the block
    between the iaasboot markers is owned here; it is replaced on every
    run, and stray assignments of managed keys elsewhere in the file are
    removed. The file is world-readable, so secret keys are refused.
    """
    path: str = "/etc/environment"
    keys: Optional[List[str]] = None

    def _values(self, bundle: ConfigurationBundle) -> Dict[str, str]:
        values = bundle.select(self.keys)
        leaked = sorted(set(values) & bundle.secret_keys)
        if leaked:
            raise TemplateRenderError(f"{self.path} is world-readable; refusing secret keys {', '.join(leaked)}")
        _check_values(self.path, values)
        return values

    def render(self, bundle: ConfigurationBundle, current: Optional[str]) -> str:
        values = self._values(bundle)
        block = [
            BEGIN_MARKER,
            "# Regenerated on every provisioning run. Do not edit inside this block.",
            *(_env_line(k, v) for k, v in values.items()),
            END_MARKER,
        ]

        kept: List[str] = []
        inside = False
        for line in (current or "").splitlines():
            if line.strip() == BEGIN_MARKER:
                inside = True
                continue
            if line.strip() == END_MARKER:
                inside = False
                continue
            if inside:
                continue
            key = line.split("=", 1)[0].strip()
            if "=" in line and key in values:
                continue
            kept.append(line)

        while kept and not kept[-1].strip():
            kept.pop()
        return "\n".join(kept + block) + "\n"

    def write(self, bundle: ConfigurationBundle, fs: HostFS) -> bool:
        return fs.write_text(self.path, self.render(bundle, fs.read_text(self.path)), mode=0o644)


@dataclass
class DotenvSink:
    """Component-local dotenv; full overwrite, owner read/write only."""
    path: str
    keys: Optional[List[str]] = None
    owner: Optional[str] = None
    header: str = "# Production environment configuration\n# Regenerated on every provisioning run\n"

    def render(self, bundle: ConfigurationBundle, current: Optional[str] = None) -> str:
        values = bundle.select(self.keys)
        _check_values(self.path, values)
        return self.header + "".join(_env_line(k, v) + "\n" for k, v in values.items())

    def write(self, bundle: ConfigurationBundle, fs: HostFS) -> bool:
        secret = bool(set(bundle.select(self.keys)) & bundle.secret_keys)
        return fs.write_text(self.path, self.render(bundle), mode=0o600, owner=self.owner, secret=secret)


@dataclass
class JsonFileSink:
    """
    Static JSON fetched by the browser client at runtime. Served publicly,
    so it never accepts secret keys.
    """
    path: str
    keys: Optional[List[str]] = None

    def render(self, bundle: ConfigurationBundle, current: Optional[str] = None) -> str:
        values = bundle.select(self.keys)
        leaked = sorted(set(values) & bundle.secret_keys)
        if leaked:
            raise TemplateRenderError(f"{self.path} is served to clients; refusing secret keys {', '.join(leaked)}")
        _check_values(self.path, values)
        return json.dumps(values, indent=2) + "\n"

    def write(self, bundle: ConfigurationBundle, fs: HostFS) -> bool:
        return fs.write_text(self.path, self.render(bundle), mode=0o644)


@dataclass
class TemplateFileSink:
    """Service config file rendered from a packaged template; full overwrite."""
    path: str
    template: str
    renderer: TemplateRenderer
    context: Dict[str, Any] = field(default_factory=dict)
    mode: int = 0o644
    owner: Optional[str] = None

    def render(self, bundle: ConfigurationBundle, current: Optional[str] = None) -> str:
        return self.renderer.render(self.template, {**self.context, **bundle.values})

    def write(self, bundle: ConfigurationBundle, fs: HostFS) -> bool:
        secret = bool(bundle.secret_keys)
        return fs.write_text(self.path, self.render(bundle), mode=self.mode, owner=self.owner, secret=secret)
