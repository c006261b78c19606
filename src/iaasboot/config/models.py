# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/config/models.py

from __future__ import annotations

from typing import List, Literal, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field, SecretStr, model_validator

GIB = 1024 ** 3

Role = Literal["web", "app", "db"]


class NodeSpec(BaseModel):
    """The VM this run executes on. Created by the provisioning layer."""

    role: Role
    zone: Optional[str] = None
    private_ip: str
    tag: Optional[str] = None        # changes to force a re-run; never interpreted


class LockSpec(BaseModel):
    paths: List[str] = Field(default_factory=lambda: [
        "/var/lib/dpkg/lock-frontend",
        "/var/lib/apt/lists/lock",
        "/var/cache/apt/archives/lock",
    ])
    timeout_seconds: float = 300
    interval_seconds: float = 10
    dpkg_lock_timeout: int = 120     # apt-get -o DPkg::Lock::Timeout


class ServiceCheckSpec(BaseModel):
    attempts: int = 3
    interval_seconds: float = 5
    log_tail_lines: int = 50


class VolumeSpec(BaseModel):
    expected_size_gb: int = 128
    tolerance: float = 0.10
    mount_point: str = "/data/mongodb"
    fs_type: str = "xfs"
    fallback_devices: List[str] = Field(default_factory=lambda: ["/dev/sdc", "/dev/sdd", "/dev/sde", "/dev/sdf"])
    fallback_min_size_gb: int = 32
    mount_attempts: int = 5
    mount_backoff_seconds: float = 3
    mount_options: str = "defaults,nofail"

    @property
    def expected_size_bytes(self) -> int:
        return self.expected_size_gb * GIB

    @property
    def tolerance_bytes(self) -> int:
        return int(self.expected_size_bytes * self.tolerance)


class WebTierParams(BaseModel):
    api_upstream: str = "http://10.0.2.10:3000"
    server_name: str = "blogapp.local"
    web_root: str = "/var/www/html"
    cert_dir: str = "/etc/nginx/ssl"
    cert_subject: str = "/C=JP/ST=Tokyo/L=Tokyo/O=Workshop/OU=IT/CN=blogapp.local"
    cert_days: int = 365
    entra_tenant_id: str
    entra_frontend_client_id: str
    entra_backend_client_id: str
    api_base_url: str = "/api"


class AppTierParams(BaseModel):
    user: str = "azureuser"
    app_dir: str = "/opt/blogapp"
    node_major: int = 20
    port: int = 3000
    log_level: str = "info"
    node_env: str = "production"
    pm2_app_name: str = "blogapp-health"
    mongodb_uri: SecretStr
    entra_tenant_id: str
    entra_client_id: str
    environment_file: str = "/etc/environment"


class ReplicaMember(BaseModel):
    host: str
    port: int = 27017
    priority: float = 1
    votes: int = 1
    initiator: bool = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class ReplicaSetSpec(BaseModel):
    name: str = "blogapp-rs0"
    members: List[ReplicaMember]
    election_timeout_seconds: float = 60
    election_interval_seconds: float = 3
    # other members provision concurrently; rs.initiate waits for their mongod
    members_timeout_seconds: float = 600
    members_interval_seconds: float = 10

    @model_validator(mode="after")
    def _check_members(self) -> "ReplicaSetSpec":
        if not self.members:
            raise ValueError("replica set needs at least one member")
        if sum(1 for m in self.members if m.initiator) > 1:
            raise ValueError("at most one replica set member may be marked initiator")
        return self

    def initiator(self) -> ReplicaMember:
        """Explicitly flagged member, else the highest priority one (first wins ties)."""
        for m in self.members:
            if m.initiator:
                return m
        return max(self.members, key=lambda m: m.priority)

    def is_initiator(self, host: str) -> bool:
        return self.initiator().host == host

    def connection_string(self, user: str, password: str, database: str) -> str:
        hosts = ",".join(m.address for m in self.members)
        return (
            f"mongodb://{quote(user, safe='')}:{quote(password, safe='')}@{hosts}/{database}"
            f"?replicaSet={self.name}&authSource={database}"
        )


class DbTierParams(BaseModel):
    mongodb_version: str = "7.0"
    ubuntu_codename: Optional[str] = None     # read from /etc/os-release when unset
    bind_ip: str = "0.0.0.0"
    port: int = 27017
    log_dir: str = "/var/log/mongodb"
    service_user: str = "mongodb"
    volume: VolumeSpec = Field(default_factory=VolumeSpec)
    replica_set: ReplicaSetSpec
    app_database: str = "blogapp"
    admin_user: str = "blogadmin"
    admin_password: Optional[SecretStr] = None
    app_user: str = "blogapp"
    app_password: Optional[SecretStr] = None

    @property
    def data_dir(self) -> str:
        return f"{self.volume.mount_point.rstrip('/')}/db"


class NodeParams(BaseModel):
    node: NodeSpec
    locks: LockSpec = Field(default_factory=LockSpec)
    services: ServiceCheckSpec = Field(default_factory=ServiceCheckSpec)
    web: Optional[WebTierParams] = None
    app: Optional[AppTierParams] = None
    db: Optional[DbTierParams] = None

    @model_validator(mode="after")
    def _check_role_section(self) -> "NodeParams":
        if getattr(self, self.node.role) is None:
            raise ValueError(f"role '{self.node.role}' requires a '{self.node.role}' section")
        return self

    def secret_values(self) -> List[str]:
        """Every secret this run may handle, for log redaction."""
        out: List[str] = []
        if self.app:
            out.append(self.app.mongodb_uri.get_secret_value())
        if self.db:
            for s in (self.db.admin_password, self.db.app_password):
                if s is not None:
                    out.append(s.get_secret_value())
        return [v for v in out if v]
