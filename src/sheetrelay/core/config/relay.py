"""Top-level relay configuration."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from sheetrelay.core.config.execution import (
    EscalationConfig,
    InputConfig,
    LockConfig,
    SchedulerConfig,
    TimeoutConfig,
    WaitConfig,
)
from sheetrelay.core.config.log import LogConfig


class RelayConfig(BaseModel):
    """Complete configuration for a relay run.

    Every section has defaults, so an empty document is valid.

    Example:
        scheduler:
          batch_size: 3
          stagger_delay_seconds: 5
        escalation:
          vendor: chatgpt
        wait:
          wait_for_busy: true
    """

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    wait: WaitConfig = Field(default_factory=WaitConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    input: InputConfig = Field(default_factory=InputConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> RelayConfig:
        """Load relay configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> RelayConfig:
        """Load relay configuration from a YAML string."""
        data = yaml.safe_load(yaml_str)
        return cls.model_validate(data or {})
