# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/packages/apt.py

from __future__ import annotations

import logging
import shlex
from typing import Callable, Dict, List, Optional, Sequence

from iaasboot.config.models import LockSpec
from iaasboot.execution.runner import CommandRunner
from iaasboot.utils.hostfs import HostFS
from iaasboot.utils.retry import Clock

from .locks import ensure_unlocked, is_held

log = logging.getLogger("iaasboot")

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def split_pin(spec: str) -> tuple[str, Optional[str]]:
    """'nginx' -> ('nginx', None); 'mongodb-org=7.0.14' -> ('mongodb-org', '7.0.14')"""
    name, _, version = spec.partition("=")
    return name, (version or None)


class AptClient:
    """
    apt-get wrapper. Every mutating call first waits for the dpkg/apt locks
    to be free; the DPkg::Lock::Timeout option only backs that up.
    """

    def __init__(
        self,
        runner: CommandRunner,
        fs: HostFS,
        locks: LockSpec,
        *,
        clock: Optional[Clock] = None,
        lock_probe: Callable[[str], bool] = is_held,
    ):
        self.runner = runner
        self.fs = fs
        self.locks = locks
        self.clock = clock
        self.lock_probe = lock_probe
        self._index_fresh = False

    def _gate(self) -> None:
        ensure_unlocked(
            self.locks.paths,
            self.locks.timeout_seconds,
            self.locks.interval_seconds,
            clock=self.clock,
            probe=self.lock_probe,
        )

    def _apt_get(self, *args: str) -> None:
        self._gate()
        self.runner.run(
            ["apt-get", "-o", f"DPkg::Lock::Timeout={self.locks.dpkg_lock_timeout}", *args],
            env=APT_ENV,
        )

    def update(self) -> None:
        self._apt_get("update")
        self._index_fresh = True

    def installed_version(self, name: str) -> Optional[str]:
        res = self.runner.probe().run(
            ["dpkg-query", "-W", "-f=${Status} ${Version}", name], check=False, quiet=True
        )
        if res.returncode != 0:
            return None
        status, _, version = res.stdout.strip().rpartition(" ")
        if status != "install ok installed":
            return None
        return version

    def missing(self, packages: Sequence[str]) -> List[str]:
        out = []
        for spec in packages:
            name, pin = split_pin(spec)
            have = self.installed_version(name)
            if have is None or (pin is not None and have != pin):
                out.append(spec)
        return out

    def ensure_installed(self, packages: Sequence[str]) -> List[str]:
        """Install what is missing or at the wrong version. No-op when all present."""
        todo = self.missing(packages)
        if not todo:
            log.info(f"[apt] already installed: {' '.join(packages)}")
            return []
        if not self._index_fresh:
            self.update()
        self._apt_get("-y", "install", *todo)
        return [f"installed {p}" for p in todo]

    def ensure_repository(
        self,
        name: str,
        *,
        key_url: str,
        source_line: str,
        keyring_dir: str = "/etc/apt/keyrings",
    ) -> List[str]:
        """
        Add a signed third-party repository. The keyring is fetched only when
        missing; the list file is rewritten only when its content differs.
        """
        actions: List[str] = []
        keyring = f"{keyring_dir}/{name}.gpg"
        list_file = f"/etc/apt/sources.list.d/{name}.list"

        self.fs.ensure_dir(keyring_dir, mode=0o755)
        if not self.fs.exists(keyring):
            log.info(f"[apt] downloading {name} signing key")
            target = str(self.fs.path(keyring))
            self.runner.run([
                "bash", "-c",
                f"curl -fsSL {shlex.quote(key_url)} | gpg --batch --yes --dearmor -o {shlex.quote(target)}",
            ])
            actions.append(f"added keyring {keyring}")
        else:
            log.info(f"[apt] {name} signing key already present, skipping download")

        if self.fs.write_text(list_file, source_line.rstrip("\n") + "\n", mode=0o644):
            actions.append(f"wrote {list_file}")
            self._index_fresh = False
        return actions

    def reconcile(self, packages: Sequence[str], repositories: Sequence[Dict[str, str]] = ()) -> List[str]:
        actions: List[str] = []
        for repo in repositories:
            actions += self.ensure_repository(**repo)
        actions += self.ensure_installed(packages)
        return actions
