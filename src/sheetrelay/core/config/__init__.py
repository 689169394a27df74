"""Configuration models for sheetrelay.

This package provides Pydantic models for loading and validating YAML relay
configurations. All models are re-exported from this ``__init__``.
"""

from sheetrelay.core.config.execution import (
    EscalationConfig,
    InputConfig,
    LockConfig,
    SchedulerConfig,
    TierConfig,
    TimeoutConfig,
    WaitConfig,
)
from sheetrelay.core.config.log import LogConfig
from sheetrelay.core.config.relay import RelayConfig

__all__ = [
    # Execution
    "EscalationConfig",
    "InputConfig",
    "LockConfig",
    "SchedulerConfig",
    "TierConfig",
    "TimeoutConfig",
    "WaitConfig",
    # Logging
    "LogConfig",
    # Relay
    "RelayConfig",
]
