"""
Configuration module: Settings, logging, constants.
"""

from shared.config.settings import settings, get_settings, DATABASE_URL
from shared.config.logging import get_logger, setup_logging, mask_email, mask_token
from shared.config.constants import (
    PaymentStatus,
    StatusSource,
    CheckSource,
    Limits,
    SIMULATED_ID_PREFIX,
    TEST_TOKEN_PREFIX,
)

__all__ = [
    # settings
    "settings",
    "get_settings",
    "DATABASE_URL",
    # logging
    "get_logger",
    "setup_logging",
    "mask_email",
    "mask_token",
    # constants
    "PaymentStatus",
    "StatusSource",
    "CheckSource",
    "Limits",
    "SIMULATED_ID_PREFIX",
    "TEST_TOKEN_PREFIX",
]
