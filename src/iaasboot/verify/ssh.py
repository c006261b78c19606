# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/verify/ssh.py

from __future__ import annotations

import shlex
from typing import Optional

import paramiko


class SSHRunner:
    """Runs read-only commands on a provisioned node."""

    def __init__(self, client: paramiko.SSHClient):
        self.client = client

    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        timeout: Optional[int] = 60,
    ) -> tuple[int, str, str]:
        if sudo:
            cmd = f"sudo -n bash -c {shlex.quote(cmd)}"

        stdin, stdout, stderr = self.client.exec_command(cmd, timeout=timeout)
        out = stdout.read().decode()
        err = stderr.read().decode()
        rc = stdout.channel.recv_exit_status()
        return rc, out, err

    def close(self) -> None:
        self.client.close()


def open_ssh(
    address: str,
    *,
    username: str = "azureuser",
    key_path: Optional[str] = None,
    port: int = 22,
    connect_timeout: float = 20.0,
) -> SSHRunner:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    pkey = None
    if key_path:
        for key_cls in (
            paramiko.RSAKey,
            paramiko.Ed25519Key,
            paramiko.ECDSAKey,
        ):
            try:
                pkey = key_cls.from_private_key_file(key_path)
                break
            except paramiko.SSHException:
                continue

    client.connect(
        hostname=address,
        port=port,
        username=username,
        pkey=pkey,
        timeout=connect_timeout,
        allow_agent=True,
        look_for_keys=True,
    )

    return SSHRunner(client)
