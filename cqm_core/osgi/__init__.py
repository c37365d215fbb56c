"""OSGi bundle health checks and configuration management."""

from .monitor import StabilityMonitor, step
from .reconciler import ConfigReconciler, flatten_properties, merge_properties, sanitize
from .toolkit import ConfigToolClient, property_args
from .types import ConfigState, HealthcheckConfig, MonitorResult, MonitorRun, MonitorStatus

__all__ = [
    "ConfigReconciler",
    "ConfigState",
    "ConfigToolClient",
    "HealthcheckConfig",
    "MonitorResult",
    "MonitorRun",
    "MonitorStatus",
    "StabilityMonitor",
    "flatten_properties",
    "merge_properties",
    "property_args",
    "sanitize",
    "step",
]
