"""
onchain-orchestrator — package root

File: src/onchain_orchestrator/__init__.py

Purpose
- Orchestration control plane for multi-agent on-chain analytics workers.
- Classifies inbound tool calls, gates them on resource pressure, routes them to
  worker agents (directly or as staged waves), and validates inputs/outputs.

Import boundary
- No side effects at import time (no config loading, no logging init, no threads).
- Submodules are imported lazily by callers; only metadata is exported here.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
