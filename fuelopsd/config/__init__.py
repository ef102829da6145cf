"""
Configuration loaders for the fuelops daemon.
"""

from .archival_config import ArchivalSettings, load_archival_settings

__all__ = ['ArchivalSettings', 'load_archival_settings']
