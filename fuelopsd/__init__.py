"""
Fuelops Daemon - data lifecycle engine for the fleet fuel-logistics platform.

This package contains the runtime components that move aging operational
records (fuel records, LPO entries, yard dispenses, delivery orders and audit
logs) from the active store into per-entity-type archives and back.
"""

__version__ = "0.1.0"
