from services.monitoring.monitoring_service import MonitoringService, drift_severity, threshold_level
from services.monitoring.drift import compute_drift, ks_p_value, ks_statistic
from services.monitoring.scheduled_sweep import ScheduledMonitoringSweep

__all__ = [
    "MonitoringService",
    "drift_severity",
    "threshold_level",
    "compute_drift",
    "ks_p_value",
    "ks_statistic",
    "ScheduledMonitoringSweep",
]
