"""
Switchboard Configuration Loader

Loads configuration from:
1. Environment variables (.env)
2. config.yml (YAML file)
3. Default values

Environment variables take precedence over YAML values.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


# Load .env file
load_dotenv()

PACKAGE_ROOT = Path(__file__).parent.parent


# =============================================================================
# Pydantic Configuration Models
# =============================================================================

class SystemConfig(BaseModel):
    """System-level configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ModelConfig(BaseModel):
    """One model tier (OpenAI-compatible endpoint)."""
    name: str
    model: str
    base_url: str = "https://openrouter.ai/api/v1"
    api_key: str = ""


class LLMConfig(BaseModel):
    """LLM configuration."""
    primary: ModelConfig = Field(default_factory=lambda: ModelConfig(
        name="kat-coder-pro",
        model="kwaipilot/kat-coder-pro:free",
    ))
    fallback: ModelConfig = Field(default_factory=lambda: ModelConfig(
        name="gemini-2.5-flash-lite",
        model="google/gemini-2.5-flash-lite",
    ))
    temperature: float = 0.3
    max_tokens: int = 4096
    timeout: float = 120.0
    force_tier: Optional[str] = None
    extraction_model: Optional[str] = None


class RetryConfig(BaseModel):
    """Backoff settings used when every model tier is cooling down."""
    max_retries: int = 3
    initial_delay_ms: int = 2000
    max_delay_ms: int = 8000
    jitter_factor: float = 0.1


class BatchingConfig(BaseModel):
    """Incremental update throttling."""
    batch_delay_ms: int = 150
    min_chars: int = 50
    max_delay_ms: int = 1000


class MemoryConfig(BaseModel):
    """Conversation memory configuration."""
    database_path: str = "./data/switchboard.db"
    last_messages: int = 20
    thread_override: str = "main"


class RoutingConfig(BaseModel):
    """Rule table locations."""
    intent_rules_path: Path = PACKAGE_ROOT / "routing" / "intent_rules.yml"
    routing_rules_path: Path = PACKAGE_ROOT / "routing" / "routing_rules.yml"


class FeishuConfig(BaseModel):
    """Feishu (Lark) open platform credentials."""
    app_id: str = ""
    app_secret: str = ""
    base_url: str = "https://open.feishu.cn/open-apis"
    verification_token: str = ""


class GitLabConfig(BaseModel):
    """glab CLI configuration."""
    default_project: str = "dpa/dagster"
    glab_path: str = "glab"
    timeout_sec: int = 30


class AnalyticsConfig(BaseModel):
    """OKR metrics database."""
    database_url: str = "sqlite:///./data/okr_metrics.db"
    metrics_table: str = "okr_metrics"


class APIConfig(BaseModel):
    """HTTP API configuration."""
    api_key: str = ""


class Config(BaseModel):
    """Main configuration container."""
    system: SystemConfig = Field(default_factory=SystemConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    batching: BatchingConfig = Field(default_factory=BatchingConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    feishu: FeishuConfig = Field(default_factory=FeishuConfig)
    gitlab: GitLabConfig = Field(default_factory=GitLabConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    api: APIConfig = Field(default_factory=APIConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def find_config_file() -> Optional[Path]:
    """Find the config.yml file, searching up the directory tree."""
    current = Path(__file__).parent

    # Search up to 5 levels
    for _ in range(5):
        config_path = current / "config.yml"
        if config_path.exists():
            return config_path
        current = current.parent

    cwd_config = Path.cwd() / "config.yml"
    if cwd_config.exists():
        return cwd_config

    return None


def load_yaml_config(config_path: Path) -> dict:
    """Load configuration from YAML file."""
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        print(f"Warning: Could not load config from {config_path}: {e}")
        return {}


def apply_env_overrides(config_dict: dict) -> dict:
    """Apply environment variable overrides to config dictionary.

    Environment variables are mapped using SWITCHBOARD_ prefix and double
    underscores for nesting. For example:
    - SWITCHBOARD_SYSTEM__PORT=9000 -> config['system']['port'] = 9000
    - SWITCHBOARD_LLM__PRIMARY__API_KEY=... -> config['llm']['primary']['api_key'] = ...
    """
    prefix = "SWITCHBOARD_"

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix):].lower()
        parts = config_key.split("__")

        if len(parts) == 1:
            # Top-level scalars like SWITCHBOARD_LOG_LEVEL are not config sections
            continue

        section = config_dict
        for part in parts[:-1]:
            if not isinstance(section.get(part), dict):
                section[part] = {}
            section = section[part]
        section[parts[-1]] = _parse_env_value(value)

    return config_dict


def _parse_env_value(value: str):
    """Parse environment variable value to appropriate type."""
    # Boolean
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    # Integer
    try:
        return int(value)
    except ValueError:
        pass

    # Float
    try:
        return float(value)
    except ValueError:
        pass

    return value


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Explicit config file; searched for when omitted

    Returns:
        Config: Validated configuration object
    """
    config_path = config_path or find_config_file()
    if config_path:
        config_dict = load_yaml_config(config_path)
    else:
        config_dict = {}

    config_dict = apply_env_overrides(config_dict)

    return Config(**config_dict)


# =============================================================================
# Global Configuration Instance
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    This function loads the configuration on first call and caches it.
    Use reload_config() to force a reload.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Force reload of configuration from files.

    Returns:
        Config: Newly loaded configuration
    """
    global _config
    _config = load_config()
    return _config
