from __future__ import annotations

from dataclasses import dataclass

from .config import Settings
from .oauth_flow import FlowCoordinator
from .settings_store import SettingsStore


@dataclass(frozen=True)
class Deps:
    settings: Settings
    store: SettingsStore
    coordinator: FlowCoordinator
