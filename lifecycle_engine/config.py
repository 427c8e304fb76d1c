"""
Configuration for the Lifecycle Engine.

Settings are read from a YAML or JSON file. The API server looks for the
file named by the LIFECYCLE_ENGINE_CONFIG environment variable.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LIFECYCLE_ENGINE_CONFIG"


class GoogleSettings(BaseModel):
    """Google Workspace service-account settings."""
    domain: Optional[str] = None
    admin_email: Optional[str] = Field(None, description="Super admin the service account impersonates")
    credentials_path: Optional[str] = Field(None, description="Service account JSON key file")


class SlackSettings(BaseModel):
    """Slack admin API settings."""
    token: Optional[str] = None
    team_id: Optional[str] = None


class EngineConfig(BaseModel):
    """Runtime configuration for the workflow engine and its collaborators."""
    mock_mode: bool = Field(True, description="Use in-memory identity provider and app connectors")
    state_file: Optional[str] = Field(None, description="JSON file persisting workflows and tasks")
    audit_dir: Optional[str] = Field(None, description="Directory for daily JSONL audit files")
    policy_file: Optional[str] = Field(None, description="YAML provisioning policy")
    directory_file: Optional[str] = Field(None, description="YAML/JSON employee directory")
    max_automation_attempts: Optional[int] = Field(
        None, description="Attempts allowed per automated task before manual intervention"
    )
    max_workers: int = Field(4, description="Thread pool size for running automated tasks")
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)

    @field_validator("max_automation_attempts")
    @classmethod
    def validate_attempts(cls, v):
        if v is not None and v < 1:
            raise ValueError("max_automation_attempts must be at least 1")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v):
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        return v


def load_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """
    Load engine configuration.

    Args:
        path: YAML or JSON config file. Defaults to the file named by
              LIFECYCLE_ENGINE_CONFIG; without either, defaults are used.

    Returns:
        EngineConfig
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        logger.info("No configuration file given, using defaults")
        return EngineConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        if config_path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)

    logger.info(f"Loaded configuration from {config_path}")
    return EngineConfig.model_validate(data or {})
