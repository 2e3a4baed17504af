"""
oc-metrics - a metrics telemetry service.

This package accepts named, timestamped data points over JSON-RPC, persists
them in SQLite, and answers prefix/time-range queries. The SQLite schema is
managed by the migration engine in ``oc_metrics.migrator``.
"""

__version__ = "0.1.0"
