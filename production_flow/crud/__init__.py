from .stages import production_order, stage_instance
from .status_logs import stage_status_log

__all__ = ["production_order", "stage_instance", "stage_status_log"]
