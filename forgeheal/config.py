"""
Configuration Management
========================

Handles loading engine configuration from environment variables and an
optional JSON config file.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
CONFIG_FILENAME = "forgeheal_config.json"
DEFAULT_PROTECTED_PATHS = (
    "lib/agent/safety/",
    "lib/agent/constants.ts",
    ".env",
)

ENV_PREFIX = "FORGEHEAL_"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class HealConfig:
    """Self-improvement engine configuration."""
    protected_paths: tuple[str, ...] = DEFAULT_PROTECTED_PATHS
    max_files: int = 10
    max_iterations: int = 5
    history_limit: int = 50
    max_patterns: int = 100
    pattern_recency_days: int = 30
    similarity_floor: float = 0.15
    regenerate_plan_on_retry: bool = False
    model: str = DEFAULT_MODEL
    data_dir: str = ".forgeheal"

    def __post_init__(self):
        self.protected_paths = tuple(self.protected_paths)
        if self.max_files < 1:
            raise ValueError("max_files must be at least 1")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if not 0.0 <= self.similarity_floor <= 1.0:
            raise ValueError("similarity_floor must be in [0, 1]")

    def is_protected(self, path: str) -> bool:
        return is_protected_path(path, self.protected_paths)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["protected_paths"] = list(self.protected_paths)
        return data

    @classmethod
    def load(cls, config_path: Optional[Path] = None, use_dotenv: bool = True) -> "HealConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables (FORGEHEAL_*)
        2. Local config file (forgeheal_config.json)
        3. Default values
        """
        if use_dotenv:
            load_dotenv()

        config: dict[str, Any] = {}
        known = {f.name for f in fields(cls)}

        # Load from config file if exists
        path = Path(config_path) if config_path else Path(CONFIG_FILENAME)
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    file_config = json.load(f)
                config.update({k: v for k, v in file_config.items() if k in known})
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", path, e)

        # Override with environment variables
        env = os.environ
        if env.get(f"{ENV_PREFIX}PROTECTED_PATHS"):
            config["protected_paths"] = [
                p.strip() for p in env[f"{ENV_PREFIX}PROTECTED_PATHS"].split(",") if p.strip()
            ]
        for key in ("max_files", "max_iterations", "history_limit", "max_patterns"):
            raw = env.get(f"{ENV_PREFIX}{key.upper()}")
            if raw:
                config[key] = int(raw)
        if env.get(f"{ENV_PREFIX}REGENERATE_PLAN"):
            config["regenerate_plan_on_retry"] = _parse_bool(env[f"{ENV_PREFIX}REGENERATE_PLAN"])
        if env.get(f"{ENV_PREFIX}MODEL"):
            config["model"] = env[f"{ENV_PREFIX}MODEL"]

        return cls(**config)


def is_protected_path(path: str, protected_paths) -> bool:
    """True when ``path`` starts with any protected prefix."""
    normalized = path.lstrip("/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return any(normalized.startswith(prefix.lstrip("/")) for prefix in protected_paths)
