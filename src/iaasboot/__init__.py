# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

"""Node bootstrap and configuration injection for Azure IaaS workshop VMs."""

__version__ = "0.3.0"
