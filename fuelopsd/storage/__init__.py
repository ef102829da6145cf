"""
Storage and archival components for the fuelops daemon.
"""

from .archival_models import (
    ArchivalError,
    UnknownEntityTypeError,
    InvalidJobTransitionError,
    ArchivalAlreadyRunningError,
    ArchivalCancelledError,
    ArchivalLeaseLostError,
    RestoreConflictError,
    ArchivalOptions,
    ArchivalStats,
    CancellationToken,
    ConflictPolicy,
    JobRecord,
    JobStatus,
    RunResult,
)
from .archival_registry import ArchivalRegistry, EntityType, build_registry
from .archival_orchestrator import ArchivalOrchestrator
from .archival_restore import ArchiveRestorer
from .archival_stats import ArchivalStatsReporter
from .retention_config import RetentionResolver, YamlRetentionSettings, StaticRetentionSettings

__all__ = [
    'ArchivalError',
    'UnknownEntityTypeError',
    'InvalidJobTransitionError',
    'ArchivalAlreadyRunningError',
    'ArchivalCancelledError',
    'ArchivalLeaseLostError',
    'RestoreConflictError',
    'ArchivalOptions',
    'ArchivalStats',
    'CancellationToken',
    'ConflictPolicy',
    'JobRecord',
    'JobStatus',
    'RunResult',
    'ArchivalRegistry',
    'EntityType',
    'build_registry',
    'ArchivalOrchestrator',
    'ArchiveRestorer',
    'ArchivalStatsReporter',
    'RetentionResolver',
    'YamlRetentionSettings',
    'StaticRetentionSettings',
]
