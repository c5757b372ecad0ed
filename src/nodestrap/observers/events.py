# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict


@dataclass(frozen=True)
class LifecycleEvent:
    phase: str      # validate / register / vault / render / execute / run
    status: str     # START | SUCCESS | FAILURE | INFO
    message: str

    def dict(self) -> Dict[str, Any]:
        return asdict(self)
