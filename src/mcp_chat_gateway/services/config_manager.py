"""Configuration manager for the gateway's endpoint and tool selection file."""

import json
import logging
import os
from pathlib import Path
from string import Template
from typing import List, Optional

import yaml
from pydantic import ValidationError

from ..models.config import EndpointConfig, GatewayConfig, ToolSelectionConfig

logger = logging.getLogger(__name__)


class ConfigManager:
    """Loads the gateway configuration file with environment variable substitution."""

    def __init__(self, config_path: str = "config/chat_gateway.yaml"):
        """Initialize config manager with path to configuration file."""
        self.config_path = Path(config_path)
        self._config: Optional[GatewayConfig] = None
        self._last_modified: Optional[float] = None

    def load_config(self) -> GatewayConfig:
        """Load configuration from file; a missing file yields the defaults."""
        try:
            if not self.config_path.exists():
                logger.info(f"Configuration file {self.config_path} not found, using defaults")
                self._config = GatewayConfig()
                return self._config

            # Check if file has been modified
            current_modified = self.config_path.stat().st_mtime
            if self._config is not None and self._last_modified == current_modified:
                return self._config

            raw_content = self.config_path.read_text(encoding="utf-8")
            substituted_content = self._substitute_env_vars(raw_content)

            if self.config_path.suffix.lower() in (".yaml", ".yml"):
                config_data = yaml.safe_load(substituted_content) or {}
            else:
                config_data = json.loads(substituted_content)

            if not isinstance(config_data, dict):
                raise ValueError(
                    f"Invalid configuration format: expected a mapping, got {type(config_data).__name__}"
                )

            config = GatewayConfig(**config_data)
            logger.debug(f"Parsed {len(config.default_endpoints)} default endpoint(s)")

            self._config = config
            self._last_modified = current_modified

            logger.info(f"Configuration loaded successfully from {self.config_path}")
            return config

        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise ValueError(f"Invalid configuration: {e}")
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            logger.error(f"Configuration parsing failed: {e}")
            raise ValueError(f"Invalid configuration format: {e}")

    def get_default_endpoints(self) -> List[EndpointConfig]:
        """Endpoints connected for every request, ahead of the request's own."""
        return self.load_config().default_endpoints

    def get_tool_selection(self) -> ToolSelectionConfig:
        return self.load_config().tool_selection

    def _substitute_env_vars(self, content: str) -> str:
        """Substitute ${VAR} references; unknown variables are left as-is."""
        return Template(content).safe_substitute(dict(os.environ))
