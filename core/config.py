"""Application configuration loaded from the environment.

Values come from process environment variables, with a ``.env`` file at the
repository root loaded first through python-dotenv (existing environment
variables win).

Usage:
    from core.config import load_config

    config = load_config()
    print(config.db_path)
"""

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from core.errors import ConfigError


REPO_ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = REPO_ROOT / ".env"


class AppConfig(BaseModel):
    """Runtime settings for the import pipeline."""
    db_path: Path = Field(
        default=REPO_ROOT / "component_library.db",
        description="SQLite database holding the component library",
    )
    artifacts_dir: Path = Field(
        default=REPO_ROOT / "artifacts",
        description="Directory for stored source files and extraction artifacts",
    )
    openai_api_key: Optional[str] = Field(default=None, description="Key for the semantic matcher")
    semantic_match_model: str = Field(default="gpt-4o-mini", description="Model used for semantic comparisons")

    usd_to_ils_rate: Decimal = Field(default=Decimal("3.7"), description="NIS per 1 USD")
    eur_to_ils_rate: Decimal = Field(default=Decimal("4.0"), description="NIS per 1 EUR")

    default_margin_percent: Decimal = Field(default=Decimal("25"), description="Initial global margin")
    default_category: str = Field(default="other", description="Category for new components without one")
    match_concurrency: int = Field(default=1, description="Parallel candidates during matching (1 = sequential)")

    log_json: bool = Field(default=False, description="Emit JSON log lines")
    log_level: str = Field(default="INFO")


def load_env_var(name: str) -> Optional[str]:
    """Load an environment variable, reading the repo .env file on first use."""
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH, override=False)
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _decimal_var(name: str, default: Decimal) -> Decimal:
    raw = load_env_var(name)
    if raw is None:
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ConfigError(f"{name} must be a number, got '{raw}'")
    return value


def _int_var(name: str, default: int) -> int:
    raw = load_env_var(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")


def _bool_var(name: str, default: bool) -> bool:
    raw = load_env_var(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_config() -> AppConfig:
    """Build an AppConfig from environment variables and the .env file.

    Recognized variables:
        COMPONENT_LIBRARY_DB, ARTIFACTS_DIR, OPENAI_API_KEY,
        SEMANTIC_MATCH_MODEL, USD_TO_ILS_RATE, EUR_TO_ILS_RATE,
        DEFAULT_MARGIN_PERCENT, DEFAULT_CATEGORY, MATCH_CONCURRENCY,
        LOG_JSON, LOG_LEVEL

    Raises:
        ConfigError: If a numeric variable cannot be parsed or a rate is not positive
    """
    defaults = AppConfig()

    db_path = load_env_var("COMPONENT_LIBRARY_DB")
    artifacts_dir = load_env_var("ARTIFACTS_DIR")

    config = AppConfig(
        db_path=Path(db_path) if db_path else defaults.db_path,
        artifacts_dir=Path(artifacts_dir) if artifacts_dir else defaults.artifacts_dir,
        openai_api_key=load_env_var("OPENAI_API_KEY"),
        semantic_match_model=load_env_var("SEMANTIC_MATCH_MODEL") or defaults.semantic_match_model,
        usd_to_ils_rate=_decimal_var("USD_TO_ILS_RATE", defaults.usd_to_ils_rate),
        eur_to_ils_rate=_decimal_var("EUR_TO_ILS_RATE", defaults.eur_to_ils_rate),
        default_margin_percent=_decimal_var("DEFAULT_MARGIN_PERCENT", defaults.default_margin_percent),
        default_category=load_env_var("DEFAULT_CATEGORY") or defaults.default_category,
        match_concurrency=_int_var("MATCH_CONCURRENCY", defaults.match_concurrency),
        log_json=_bool_var("LOG_JSON", defaults.log_json),
        log_level=(load_env_var("LOG_LEVEL") or defaults.log_level).upper(),
    )

    if config.usd_to_ils_rate <= 0 or config.eur_to_ils_rate <= 0:
        raise ConfigError("Exchange rates must be positive")
    if config.match_concurrency < 1:
        raise ConfigError("MATCH_CONCURRENCY must be at least 1")

    return config
