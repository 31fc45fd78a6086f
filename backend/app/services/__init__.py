"""Business services."""

from app.services.portfolio_ledger import PortfolioLedger, portfolio_to_dict
from app.services.monitor_supervisor import MonitorRunner, MonitorSupervisor, PipelineResult

__all__ = [
    "PortfolioLedger",
    "portfolio_to_dict",
    "MonitorRunner",
    "MonitorSupervisor",
    "PipelineResult",
]
