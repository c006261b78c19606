# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/tiers/registry.py

from __future__ import annotations

from typing import Dict, Type

from .app import AppTier
from .base import TierContext, TierInstaller
from .db import DbTier
from .web import WebTier

TIERS: Dict[str, Type[TierInstaller]] = {
    "web": WebTier,
    "app": AppTier,
    "db": DbTier,
}


def build_tier(role: str, ctx: TierContext) -> TierInstaller:
    try:
        cls = TIERS[role]
    except KeyError:
        raise ValueError(f"Unknown role '{role}'. Valid: {', '.join(TIERS)}") from None
    return cls(ctx)
