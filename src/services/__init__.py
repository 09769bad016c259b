"""
Services Module - Application services for the filing wizard.

Application Services (orchestration):
- WizardSession: Drives one filing through the wizard phases

Infrastructure Services:
- Logging and observability
"""

from .logging_config import configure_logging, configure_from_settings, get_logger
from .wizard_session import (
    AutosaveError,
    NavigationResult,
    WizardSession,
    WizardSessionError,
)

__all__ = [
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "AutosaveError",
    "NavigationResult",
    "WizardSession",
    "WizardSessionError",
]
