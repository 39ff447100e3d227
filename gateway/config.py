"""
Tableau Relay - Configuration Manager
=======================================
Loads the relay configuration from two sources:

1. config.yaml  - Non-sensitive settings (server URL, timeouts, CORS, ...)
2. .env         - Connected-app secrets used to sign embed tokens

Usage:
    config = ConfigManager(project_dir="/path/to/relay")
    settings = config.load()                      # merged config dict
    secret = config.get_secret("CONNECTED_APP_SECRET_KEY")
"""

import os
import yaml
from dotenv import dotenv_values


# Default configuration values used when config.yaml is missing or incomplete.
DEFAULTS = {
    "web": {
        "port": 5000,
        "host": "0.0.0.0",
        "cors_origins": ["http://localhost:3000"],
    },
    "tableau": {
        "server_url": "https://us-west-2b.online.tableau.com",
        "api_version": "3.22",
        "site_content_url": "",
        "default_project": "",
        "page_size": 100,
    },
    "relay": {
        "request_timeout": 30,
        "batch_timeout": 60,
        "max_concurrency": 8,
        "max_depth": 32,
    },
    "embed": {
        "token_minutes": 5,
        "subject": "",
        "scopes": ["tableau:views:embed", "tableau:metrics:embed"],
        "groups": [],
    },
}

# Secrets read from the environment / .env file.
KNOWN_SECRETS = [
    "CONNECTED_APP_CLIENT_ID",
    "CONNECTED_APP_SECRET_ID",
    "CONNECTED_APP_SECRET_KEY",
]


class ConfigManager:
    """
    Read-only view over config.yaml and .env.

    Attributes:
        project_dir: Root directory of the relay project.
        config_path: Full path to config.yaml.
        env_path:    Full path to .env file.
    """

    def __init__(self, project_dir: str):
        self.project_dir = project_dir
        self.config_path = os.path.join(project_dir, "config.yaml")
        self.env_path = os.path.join(project_dir, ".env")

    def load(self) -> dict:
        """
        Load and merge configuration from config.yaml with defaults.

        Missing values are filled from DEFAULTS, so callers can index any
        section directly.

        Returns:
            A dictionary containing the full configuration. If config.yaml
            could not be parsed, the defaults are returned and the error
            text is stored under "_config_error".
        """
        config = _deep_copy(DEFAULTS)

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise yaml.YAMLError("config.yaml must contain a mapping")
                _deep_merge(config, user_config)
            except (yaml.YAMLError, OSError) as e:
                config["_config_error"] = str(e)

        return config

    def get_secret(self, name: str) -> str:
        """
        Look up a secret, preferring the process environment over .env.

        Args:
            name: Environment variable name, e.g. "CONNECTED_APP_SECRET_KEY".

        Returns:
            The value, or "" when it is not set anywhere.
        """
        value = os.environ.get(name)
        if value:
            return value
        env_values = dotenv_values(self.env_path) if os.path.exists(self.env_path) else {}
        return env_values.get(name) or ""

    def get_secrets(self) -> dict[str, str]:
        """All KNOWN_SECRETS as a name -> value dict ("" when unset)."""
        return {name: self.get_secret(name) for name in KNOWN_SECRETS}


# -- Helper Functions ---------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Create a deep copy of a nested dictionary."""
    result = {}
    for key, value in d.items():
        if isinstance(value, dict):
            result[key] = _deep_copy(value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _deep_merge(base: dict, override: dict) -> None:
    """
    Recursively merge 'override' into 'base' (in-place).

    For nested dicts, values are merged recursively.
    For all other types, override replaces base.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
