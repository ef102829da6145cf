"""
Archival engine configuration loader.
"""

import os
import yaml
from pathlib import Path
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from dotenv import load_dotenv


class ArchivalSettings(BaseModel):
    """Process-level settings for the archival engine."""
    hot_db_path: str = "data/fuelops.db"
    cold_db_path: str = "data/fuelops_archive.db"
    jobs_db_path: str = "data/fuelops_archive.db"
    retention_config_path: str = "configs/retention.yaml"
    months_to_keep: int = Field(6, gt=0)
    audit_log_months_to_keep: int = Field(12, gt=0)
    batch_size: int = Field(1000, gt=0)
    lease_ttl_hours: float = Field(6.0, gt=0)
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/archival/archival_cli.log"


_ENV_FIELDS = {
    "FUELOPS_HOT_DB": "hot_db_path",
    "FUELOPS_COLD_DB": "cold_db_path",
    "FUELOPS_JOBS_DB": "jobs_db_path",
    "FUELOPS_RETENTION_CONFIG": "retention_config_path",
    "FUELOPS_MONTHS_TO_KEEP": "months_to_keep",
    "FUELOPS_AUDIT_MONTHS_TO_KEEP": "audit_log_months_to_keep",
    "FUELOPS_BATCH_SIZE": "batch_size",
    "FUELOPS_LEASE_TTL_HOURS": "lease_ttl_hours",
    "FUELOPS_LOG_LEVEL": "log_level",
    "FUELOPS_LOG_FILE": "log_file",
}


def _settings_from_yaml(config_path: Path) -> Dict[str, Any]:
    with open(config_path, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    storage = config_data.get("storage", {})
    archival = config_data.get("archival", {})
    logging_section = config_data.get("logging", {})

    values = {
        "hot_db_path": storage.get("hot_db"),
        "cold_db_path": storage.get("cold_db"),
        "jobs_db_path": storage.get("jobs_db"),
        "retention_config_path": archival.get("retention_config"),
        "months_to_keep": archival.get("months_to_keep"),
        "audit_log_months_to_keep": archival.get("audit_log_months_to_keep"),
        "batch_size": archival.get("batch_size"),
        "lease_ttl_hours": archival.get("lease_ttl_hours"),
        "log_level": logging_section.get("level"),
        "log_file": logging_section.get("file"),
    }
    return {k: v for k, v in values.items() if v is not None}


def load_archival_settings(config_path: Optional[Path] = None) -> ArchivalSettings:
    """Load archival settings from a YAML file, overridden by .env / environment variables."""

    # Load .env file if it exists
    load_dotenv()

    values: Dict[str, Any] = {}

    if config_path is None:
        config_path = Path("configs/archival.yaml")
    else:
        config_path = Path(config_path)

    if config_path.exists():
        values.update(_settings_from_yaml(config_path))

    # Environment variables win over the file
    for env_name, field_name in _ENV_FIELDS.items():
        value = os.getenv(env_name)
        if value is not None and value != "":
            values[field_name] = value

    return ArchivalSettings(**values)
