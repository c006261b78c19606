# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/inject/injector.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from iaasboot.logging.log import register_secrets
from iaasboot.utils.hostfs import HostFS

from .sinks import ConfigurationBundle, Sink

log = logging.getLogger("iaasboot")


@dataclass
class Written:
    changed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def actions(self) -> List[str]:
        return [f"wrote {p}" for p in self.changed]


class ConfigurationInjector:
    """
    Materializes one ConfigurationBundle into its named sinks. Every sink is
    rendered before anything is written, so a missing value aborts the run
    without leaving half the files updated.
    """

    def __init__(self, fs: HostFS):
        self.fs = fs

    def materialize(self, bundle: ConfigurationBundle, sinks: Sequence[Sink]) -> Written:
        register_secrets(bundle.secrets())
        log.debug(f"[inject] bundle: {bundle.redacted()}")

        for sink in sinks:
            sink.render(bundle, self.fs.read_text(sink.path))

        written = Written()
        for sink in sinks:
            if sink.write(bundle, self.fs):
                written.changed.append(sink.path)
            else:
                written.unchanged.append(sink.path)
        log.info(
            f"[inject] {len(written.changed)} file(s) written, {len(written.unchanged)} already up to date"
        )
        return written
