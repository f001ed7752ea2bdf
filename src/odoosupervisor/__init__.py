"""
odoo-supervisor - Lifecycle supervisor for Odoo containers
"""

__version__ = "0.1.0"

from .errors import SupervisorError
from .supervisor import ProcessSupervisor
from .upgrade import UpgradeCoordinator

__all__ = ["ProcessSupervisor", "SupervisorError", "UpgradeCoordinator"]
