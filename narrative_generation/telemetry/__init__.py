"""
Telemetry Layer - Per-Batch Usage Log

Submodules:
    usage_log.py → UsageLog service and UsageSummary aggregates
"""

from narrative_generation.telemetry.usage_log import UsageGroup, UsageLog, UsageSummary

__all__ = [
    "UsageLog",
    "UsageSummary",
    "UsageGroup",
]
