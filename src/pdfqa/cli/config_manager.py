"""Configuration manager for pdfqa CLI settings."""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from pdfqa.core.chunk import validate_chunk_params
from pdfqa.core.config import DEFAULT_DATABASE_URL
from pdfqa.core.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "database_url": DEFAULT_DATABASE_URL,
    "database_pooler_url": "",
    "openai_api_key": "",
    "log_level": "INFO",
    "json_logs": False,
    "embed_provider": "openai",
    "embed_model": "text-embedding-3-small",
    "embed_batch_size": 64,
    "embed_max_workers": 1,
    "chunk_size": 2000,
    "chunk_overlap": 200,
    "fetch_timeout": 60.0,
    "match_overfetch": 3,
    "answer_model": "gpt-4o-mini",
}

SECRET_KEYS = {"openai_api_key", "database_url", "database_pooler_url"}


def _coerce(key: str, value: Any) -> Any:
    """Convert a CLI string to the type of the key's default."""
    default = DEFAULT_CONFIG.get(key)
    if not isinstance(value, str):
        return value
    if isinstance(default, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


class PdfQAConfigManager:
    """
    Manage pdfqa settings persisted as JSON.

    Each key maps to the environment variable of the same name in upper
    case, so persisted values feed the same ``get_*_config()`` readers the
    library uses.
    """

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "pdfqa_cli.json"
        self.overrides = self._load_overrides()
        self.config = {**DEFAULT_CONFIG, **self.overrides}

    def _load_overrides(self) -> Dict[str, Any]:
        """Load persisted values from file."""
        if not self.config_file.exists():
            logger.debug("No config file found, using defaults")
            return {}
        try:
            with open(self.config_file, 'r') as f:
                file_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load config file: {e}, using defaults")
            return {}
        logger.debug("Configuration loaded from file")
        return file_config

    def _save_config(self):
        """Save persisted values to file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w') as f:
            json.dump(self.overrides, f, indent=2)
        logger.info("Configuration saved to file")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self.config.get(key, default)

    def set(self, key: str, value: Any, persist: bool = True):
        """Set configuration value and export it to the environment."""
        if key not in DEFAULT_CONFIG:
            raise ValidationError(f"Unknown configuration key: {key}", field=key, operation="config")
        try:
            value = _coerce(key, value)
        except ValueError as e:
            raise ValidationError(f"Invalid value for {key}: {value!r}", field=key, operation="config") from e

        self.config[key] = value
        self.overrides[key] = value
        self._export(key, value)

        if persist:
            self._save_config()

        logger.info(f"Set {key}")

    def reset(self, key: str, persist: bool = True):
        """Reset configuration value to default."""
        if key not in DEFAULT_CONFIG:
            raise ValidationError(f"Unknown configuration key: {key}", field=key, operation="config")
        self.overrides.pop(key, None)
        self.config[key] = DEFAULT_CONFIG[key]
        os.environ.pop(key.upper(), None)
        if persist:
            self._save_config()
        logger.info(f"Reset {key} to default")

    def _export(self, key: str, value: Any):
        env_key = key.upper()
        if isinstance(value, bool):
            os.environ[env_key] = str(value).lower()
        else:
            os.environ[env_key] = str(value)

    def apply_to_environment(self):
        """Export persisted values for keys the environment does not already set."""
        for key, value in self.overrides.items():
            if key in DEFAULT_CONFIG and not os.getenv(key.upper()):
                self._export(key, value)

    def get_all(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Get all configuration values, environment taking precedence."""
        values = {}
        for key in DEFAULT_CONFIG:
            env_value = os.getenv(key.upper())
            value = env_value if env_value is not None else self.config.get(key)
            if mask_secrets and key in SECRET_KEYS and value:
                value = "***"
            values[key] = value
        return values

    def validate(self) -> Dict[str, Any]:
        """Validate current configuration."""
        validation = {
            "valid": True,
            "issues": [],
            "warnings": []
        }
        values = self.get_all(mask_secrets=False)

        if not values.get("database_url"):
            validation["issues"].append("DATABASE_URL not set")
            validation["valid"] = False

        if values.get("database_pooler_url"):
            validation["warnings"].append("DATABASE_POOLER_URL is set and takes precedence over database_url")

        if not values.get("openai_api_key") and values.get("embed_provider") == "openai":
            validation["warnings"].append("OPENAI_API_KEY not set (required for embeddings and answers)")

        if values.get("embed_provider") not in ("openai", "local"):
            validation["issues"].append("embed_provider must be 'openai' or 'local'")
            validation["valid"] = False

        try:
            validate_chunk_params(_coerce("chunk_size", values["chunk_size"]), _coerce("chunk_overlap", values["chunk_overlap"]))
        except (ValidationError, ValueError) as e:
            validation["issues"].append(f"Invalid chunking parameters: {e}")
            validation["valid"] = False

        for key in ("embed_batch_size", "embed_max_workers", "match_overfetch"):
            try:
                number = _coerce(key, values[key])
            except ValueError:
                number = None
            if not isinstance(number, int) or number < 1:
                validation["issues"].append(f"{key} must be a positive integer")
                validation["valid"] = False

        return validation


def get_config_manager() -> PdfQAConfigManager:
    """Get the configuration manager for the configured directory."""
    config_dir = os.getenv("PDFQA_CONFIG_DIR", "./config")
    return PdfQAConfigManager(config_dir)
