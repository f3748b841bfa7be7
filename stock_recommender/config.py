"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``STOCK_RECOMMENDER_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Secrets (model provider key, feature provider credentials) are never part of
``AppConfig``; they are read from the environment at the point of use via
``get_secret()`` so a config dump can be logged or printed safely.
"""

from __future__ import annotations

import os
import re
import tomllib
from datetime import date
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ── Constants ─────────────────────────────────────────────────────────────────

UNIVERSE_MIN_SIZE = 200
UNIVERSE_MAX_SIZE = 500

# Fund / ETF / SPAC / REIT naming tokens. Korean issuer brands (KODEX, TIGER,
# ...) appear as the first word of an ETF name; 스팩 and 리츠 are substrings.
DEFAULT_EXCLUDED_NAME_TOKENS: list[str] = [
    "ETF", "ETN", "KODEX", "TIGER", "KBSTAR", "ARIRANG", "HANARO", "KOSEF",
    "KINDEX", "ACE", "SOL", "RISE", "PLUS", "TIMEFOLIO", "SPAC", "REIT",
    "스팩", "리츠",
]

ENV_ANTHROPIC_API_KEY = "ANTHROPIC_API_KEY"
ENV_DATA_PROVIDER_API_KEY = "DATA_PROVIDER_API_KEY"
ENV_DATA_PROVIDER_CLIENT_ID = "DATA_PROVIDER_CLIENT_ID"
ENV_DATA_PROVIDER_CLIENT_SECRET = "DATA_PROVIDER_CLIENT_SECRET"


def _default_holidays() -> list[date]:
    """New Year's Day and Christmas for 2024–2030 (fixed-date KRX closures)."""
    holidays: list[date] = []
    for year in range(2024, 2031):
        holidays.append(date(year, 1, 1))
        holidays.append(date(year, 12, 25))
    return holidays


# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database and run-lock settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/stock_recommender.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    lock_dir: str = "data/locks"


class UniverseConfig(BaseModel):
    """Candidate selection parameters.

    ``trading_value_scale`` and ``ret_1d_weight`` are the two constants of the
    composite score ``trading_value / scale + ret_1d * weight``. They are
    heuristics, kept configurable rather than hard-coded.
    """

    model_config = ConfigDict(frozen=True)

    size: int = UNIVERSE_MIN_SIZE
    min_trading_value: Optional[float] = None
    oversample_factor: int = 3
    trading_value_scale: float = 1e9
    ret_1d_weight: float = 10.0
    excluded_name_tokens: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_NAME_TOKENS)
    )
    use_stub: bool = False

    @field_validator("size")
    @classmethod
    def validate_size(cls, v: int) -> int:
        if not UNIVERSE_MIN_SIZE <= v <= UNIVERSE_MAX_SIZE:
            raise ValueError(
                f"universe size must be in [{UNIVERSE_MIN_SIZE}, {UNIVERSE_MAX_SIZE}], got {v}."
            )
        return v

    @field_validator("oversample_factor")
    @classmethod
    def validate_oversample(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"oversample_factor must be >= 1, got {v}.")
        return v

    @field_validator("trading_value_scale")
    @classmethod
    def validate_scale(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"trading_value_scale must be > 0, got {v}.")
        return v


class LLMConfig(BaseModel):
    """Model provider request and retry settings."""

    model_config = ConfigDict(frozen=True)

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-5"
    base_url: str = "https://api.anthropic.com"
    api_version: str = "2023-06-01"
    max_output_tokens: int = 8192
    temperature: float = 0.0
    timeout_s: float = 120.0
    max_transport_attempts: int = 3
    backoff_base_s: float = 1.0
    max_retry_after_s: float = 30.0
    max_repair_attempts: int = 2
    min_truncation_retry_tokens: int = 4096

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        if v != "anthropic":
            raise ValueError(f"Unsupported LLM provider '{v}'. Only 'anthropic' is implemented.")
        return v

    @field_validator("max_output_tokens", "max_transport_attempts", "min_truncation_retry_tokens")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be >= 1, got {v}.")
        return v

    @field_validator("max_repair_attempts")
    @classmethod
    def validate_repairs(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_repair_attempts must be >= 0, got {v}.")
        return v

    @field_validator("max_retry_after_s")
    @classmethod
    def validate_retry_after_cap(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"max_retry_after_s must be >= 0, got {v}.")
        return v


class FeatureProviderConfig(BaseModel):
    """Upstream feature feed (HTTP JSON) and stub seeding settings."""

    model_config = ConfigDict(frozen=True)

    base_url: Optional[str] = None
    features_path: str = "/v1/stock_features_daily"
    timeout_s: float = 30.0
    retries: int = 3
    upsert_batch_size: int = 200
    token_url: Optional[str] = None
    token_refresh_margin_s: int = 300
    stub_size: int = 500

    @field_validator("retries", "upsert_batch_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be >= 1, got {v}.")
        return v

    @field_validator("stub_size")
    @classmethod
    def validate_stub_size(cls, v: int) -> int:
        if not 1 <= v <= 5000:
            raise ValueError(f"stub_size must be in [1, 5000], got {v}.")
        return v


class MarketConfig(BaseModel):
    """Exchange calendar used to resolve the default as-of date."""

    model_config = ConfigDict(frozen=True)

    utc_offset_hours: int = 9
    close_cutoff: str = "16:00"
    ticker_prefix: str = "KRX"
    holidays: list[date] = Field(default_factory=_default_holidays)

    @field_validator("close_cutoff")
    @classmethod
    def validate_cutoff(cls, v: str) -> str:
        match = re.fullmatch(r"(\d{1,2}):(\d{2})", v.strip())
        if match is None or int(match.group(1)) > 23 or int(match.group(2)) > 59:
            raise ValueError(f"close_cutoff must be HH:MM, got '{v}'.")
        return v.strip()

    @property
    def cutoff_hour_minute(self) -> tuple[int, int]:
        hour, minute = self.close_cutoff.split(":")
        return int(hour), int(minute)


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/stock_recommender.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    All pipeline stages and CLI commands receive an ``AppConfig`` instance.
    It is constructed by ``load_config()`` which merges TOML + .env.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    universe: UniverseConfig = UniverseConfig()
    llm: LLMConfig = LLMConfig()
    feature_provider: FeatureProviderConfig = FeatureProviderConfig()
    market: MarketConfig = MarketConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False

    @model_validator(mode="after")
    def validate_stub_covers_universe(self) -> "AppConfig":
        if self.universe.use_stub and self.feature_provider.stub_size < self.universe.size:
            raise ValueError(
                f"feature_provider.stub_size ({self.feature_provider.stub_size}) "
                f"is smaller than universe.size ({self.universe.size})."
            )
        return self


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply STOCK_RECOMMENDER_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def get_secret(name: str) -> Optional[str]:
    """Return a secret from the environment, treating blank values as unset."""
    value = os.environ.get(name, "").strip()
    return value or None


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply STOCK_RECOMMENDER_* env vars to the raw config dict.

    Supported overrides:
      STOCK_RECOMMENDER_DB_PATH               → raw["database"]["db_path"]
      STOCK_RECOMMENDER_LOCK_DIR              → raw["database"]["lock_dir"]
      STOCK_RECOMMENDER_LOG_LEVEL             → raw["logging"]["level"]
      STOCK_RECOMMENDER_DEBUG                 → raw["debug"]
      STOCK_RECOMMENDER_USE_STUB_UNIVERSE     → raw["universe"]["use_stub"]
      STOCK_RECOMMENDER_LLM_MODEL             → raw["llm"]["model"]
      STOCK_RECOMMENDER_FEATURE_PROVIDER_URL  → raw["feature_provider"]["base_url"]
      STOCK_RECOMMENDER_MARKET_HOLIDAYS       → appended to raw["market"]["holidays"]
                                                (comma-separated ISO dates)
    """
    if db_path := os.environ.get("STOCK_RECOMMENDER_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if lock_dir := os.environ.get("STOCK_RECOMMENDER_LOCK_DIR"):
        raw.setdefault("database", {})["lock_dir"] = lock_dir

    if log_level := os.environ.get("STOCK_RECOMMENDER_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("STOCK_RECOMMENDER_DEBUG"):
        raw["debug"] = _env_flag(debug)

    if use_stub := os.environ.get("STOCK_RECOMMENDER_USE_STUB_UNIVERSE"):
        raw.setdefault("universe", {})["use_stub"] = _env_flag(use_stub)

    if model := os.environ.get("STOCK_RECOMMENDER_LLM_MODEL"):
        raw.setdefault("llm", {})["model"] = model

    if provider_url := os.environ.get("STOCK_RECOMMENDER_FEATURE_PROVIDER_URL"):
        raw.setdefault("feature_provider", {})["base_url"] = provider_url

    if holidays := os.environ.get("STOCK_RECOMMENDER_MARKET_HOLIDAYS"):
        market = raw.setdefault("market", {})
        configured = [str(d) for d in market.get("holidays", _default_holidays())]
        extra = [part.strip() for part in holidays.split(",") if part.strip()]
        market["holidays"] = configured + extra

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        universe=UniverseConfig(**raw.get("universe", {})),
        llm=LLMConfig(**raw.get("llm", {})),
        feature_provider=FeatureProviderConfig(**raw.get("feature_provider", {})),
        market=MarketConfig(**raw.get("market", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
