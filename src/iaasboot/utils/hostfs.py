# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/utils/hostfs.py

from __future__ import annotations

import grp
import logging
import os
import pwd
import shutil
import stat
from pathlib import Path
from typing import Optional

from iaasboot.utils.execution import ExecutionContext

log = logging.getLogger("iaasboot")


class HostFS:
    """
    File access for host paths, optionally re-rooted under another directory
    (tests, `iaasboot render`). Writes go to a temp file in the target
    directory and are moved into place so readers never see a partial file.

    Every write reports whether it changed anything, which is what the
    reconcile functions turn into their action lists.
    """

    def __init__(self, root: str | Path = "/", ctx: ExecutionContext | None = None, manage_owner: Optional[bool] = None):
        self.root = Path(root)
        self.ctx = ctx or ExecutionContext()
        # ownership only makes sense on the real host
        self.manage_owner = (str(self.root) == "/") if manage_owner is None else manage_owner

    def path(self, p: str | Path) -> Path:
        return self.root / str(p).lstrip("/")

    def exists(self, p: str | Path) -> bool:
        return self.path(p).exists()

    def read_text(self, p: str | Path) -> Optional[str]:
        target = self.path(p)
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8")

    def _mode_matches(self, target: Path, mode: int) -> bool:
        return stat.S_IMODE(target.stat().st_mode) == mode

    def write_text(
        self,
        p: str | Path,
        content: str,
        *,
        mode: int = 0o644,
        owner: Optional[str] = None,
        secret: bool = False,
    ) -> bool:
        """
        Full overwrite of p. Returns False when content and mode already
        match. Secret content is never logged, only the path.
        """
        target = self.path(p)
        if target.is_file() and target.read_text(encoding="utf-8") == content and self._mode_matches(target, mode):
            log.debug(f"[fs] unchanged {p}")
            return False

        if self.ctx.dry_run:
            log.info(f"[fs] {self.ctx.intent('write')} {p} (mode {oct(mode)[2:]})")
            return True

        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.iaasboot-tmp-{os.getpid()}")
        # create with the final mode so secrets are never world-readable, even briefly
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(tmp, mode)
            if owner and self.manage_owner:
                user, _, group = owner.partition(":")
                shutil.chown(tmp, user=user, group=group or None)
            os.replace(tmp, target)
        finally:
            if tmp.exists():
                tmp.unlink()

        log.info(f"[fs] wrote {p} (mode {oct(mode)[2:]}{', secret' if secret else ''})")
        return True

    def ensure_dir(self, p: str | Path, *, mode: int = 0o755, owner: Optional[str] = None) -> bool:
        target = self.path(p)
        changed = False
        if not target.is_dir():
            if self.ctx.dry_run:
                log.info(f"[fs] {self.ctx.intent('create')} {p}")
                return True
            target.mkdir(parents=True, exist_ok=True)
            changed = True
        if self.ctx.dry_run:
            return changed
        if not self._mode_matches(target, mode):
            os.chmod(target, mode)
            changed = True
        if owner and self.manage_owner:
            user, _, group = owner.partition(":")
            st = target.stat()
            want_uid = pwd.getpwnam(user).pw_uid
            want_gid = grp.getgrnam(group).gr_gid if group else st.st_gid
            if (st.st_uid, st.st_gid) != (want_uid, want_gid):
                shutil.chown(target, user=user, group=group or None)
                changed = True
        if changed:
            log.info(f"[fs] ensured directory {p} (mode {oct(mode)[2:]}{', owner ' + owner if owner else ''})")
        return changed
