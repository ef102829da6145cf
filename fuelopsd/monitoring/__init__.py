"""
Monitoring module for the fuelops daemon.

Prometheus metrics for archival runs and active/archived record counts.
"""

from .metrics_collector import MetricsCollector
from .archival_metrics import ArchivalMetricsCollector

__all__ = [
    'MetricsCollector',
    'ArchivalMetricsCollector'
]
