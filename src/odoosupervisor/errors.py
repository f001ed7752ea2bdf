"""Domain errors for odoo-supervisor."""


class SupervisorError(RuntimeError):
    """Raised when a supervisor operation cannot complete."""


class FatalStartupError(SupervisorError):
    """Raised when the supervised application cannot be launched at all."""


class UpgradeInterrupted(SupervisorError):
    """Raised inside an upgrade run when a termination signal arrives."""


class UpgradeLockedError(SupervisorError):
    """Raised when another upgrade run already holds the run lock."""
