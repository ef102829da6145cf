"""
Retention configuration for the archival system.

This module reads retention settings (per-entity-type overrides and the global
fallback) and resolves the effective retention for an entity type.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Any, Optional

import structlog
import yaml

from .archival_models import (
    RetentionPolicy, CollectionRetention, GlobalRetention, RetentionDecision
)

logger = structlog.get_logger(__name__)


def _parse_months(value: Any, where: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{where}: retention months must be a positive integer, got {value!r}")
    return value


def _parse_flag(value: Any, where: str, default: bool = True) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"{where}: expected a boolean, got {value!r}")
    return value


def parse_retention_policy(config_data: Optional[Dict[str, Any]]) -> RetentionPolicy:
    """Parse the ``archival`` section of a configuration mapping."""
    section = (config_data or {}).get('archival') or {}
    if not isinstance(section, dict):
        raise ValueError("archival: expected a mapping")

    global_policy = GlobalRetention(
        archival_enabled=_parse_flag(section.get('archival_enabled'), 'archival.archival_enabled'),
        archival_months=_parse_months(section.get('archival_months'), 'archival.archival_months')
    )

    collections = {}
    for name, entry in (section.get('collections') or {}).items():
        where = f"archival.collections.{name}"
        entry = entry or {}
        if not isinstance(entry, dict):
            raise ValueError(f"{where}: expected a mapping")
        collections[name] = CollectionRetention(
            enabled=_parse_flag(entry.get('enabled'), f"{where}.enabled"),
            retention_months=_parse_months(entry.get('retention_months'), f"{where}.retention_months")
        )

    return RetentionPolicy(collections=collections, global_policy=global_policy)


def get_default_config() -> Dict[str, Any]:
    """Default retention configuration written by ``init-config``."""
    return {
        'archival': {
            'archival_enabled': True,
            'archival_months': None,
            'collections': {
                'FuelRecord': {'enabled': True, 'retention_months': 6},
                'LPOEntry': {'enabled': True, 'retention_months': 6},
                'LPOSummary': {'enabled': True, 'retention_months': 6},
                'YardFuelDispense': {'enabled': True, 'retention_months': 6},
                'DeliveryOrder': {'enabled': False},
                'AuditLog': {'enabled': True, 'retention_months': 12}
            }
        }
    }


def write_default_config(config_path: str, overwrite: bool = False) -> Path:
    """Write the default retention configuration to a YAML file."""
    path = Path(config_path)
    if path.exists() and not overwrite:
        raise FileExistsError(f"Config file already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.dump(get_default_config(), f, default_flow_style=False, indent=2, sort_keys=False)
    return path


class RetentionSettingsSource(ABC):
    """Read-only source of retention settings."""

    @abstractmethod
    async def load_policy(self) -> RetentionPolicy:
        """Load the current retention policy."""
        pass


class YamlRetentionSettings(RetentionSettingsSource):
    """Retention settings read from a YAML file on every lookup.

    A missing file is an empty policy; an unreadable or malformed file raises.
    """

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)

    async def load_policy(self) -> RetentionPolicy:
        if not self.config_path.exists():
            logger.debug("Retention config not found, using defaults", path=str(self.config_path))
            return RetentionPolicy()

        with open(self.config_path, 'r') as f:
            config_data = yaml.safe_load(f)

        if config_data is not None and not isinstance(config_data, dict):
            raise ValueError(f"Retention config must be a mapping: {self.config_path}")
        return parse_retention_policy(config_data)


class StaticRetentionSettings(RetentionSettingsSource):
    """Retention settings held in memory."""

    def __init__(self, policy: Optional[RetentionPolicy] = None):
        self.policy = policy or RetentionPolicy()

    async def load_policy(self) -> RetentionPolicy:
        return self.policy


class RetentionResolver:
    """Resolves effective retention: per-type override, then global, then default."""

    def __init__(self, source: RetentionSettingsSource):
        self.source = source

    async def resolve(self, entity_type: str, default_months: int) -> RetentionDecision:
        try:
            policy = await self.source.load_policy()
        except Exception as e:
            # A configuration outage must not disable archival
            logger.error("Failed to read retention settings, using default",
                         entity_type=entity_type, default_months=default_months, error=str(e))
            return RetentionDecision(months=default_months, enabled=True)

        override = policy.collections.get(entity_type)
        if override is not None:
            if not override.enabled:
                return RetentionDecision(months=0, enabled=False)
            return RetentionDecision(
                months=override.retention_months or default_months,
                enabled=True
            )

        global_policy = policy.global_policy
        if not global_policy.archival_enabled:
            return RetentionDecision(months=0, enabled=False)
        return RetentionDecision(
            months=global_policy.archival_months or default_months,
            enabled=True
        )
