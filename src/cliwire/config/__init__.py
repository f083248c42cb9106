"""Configuration model and parser for cliwire.yaml."""

from cliwire.config.models import AdapterConfig
from cliwire.config.parser import ConfigError, load_config

__all__ = [
    "AdapterConfig",
    "ConfigError",
    "load_config",
]
