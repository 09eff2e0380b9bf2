"""
# Configuration Management Module

This module provides the configuration system for the Revision Scheduler service.
Built on **Pydantic Settings**, it loads values from a config file or the environment,
validates them at startup, and exposes a single module-level `settings` instance.

## Configuration Loading Hierarchy

```
┌─────────────────────────────────────────────────────────────┐
│         Configuration Loading Hierarchy                     │
│  (Higher layers override lower layers)                      │
├─────────────────────────────────────────────────────────────┤
│  1. Environment Variables (HIGHEST PRIORITY)                │
├─────────────────────────────────────────────────────────────┤
│  2. REVISION_SCHEDULER_CONFIG_PATH                          │
│     - Custom config file path from env var                  │
├─────────────────────────────────────────────────────────────┤
│  3. .revision File (Project Root)                           │
├─────────────────────────────────────────────────────────────┤
│  4. .env File (Project Root)                                │
├─────────────────────────────────────────────────────────────┤
│  5. Default Values (LOWEST PRIORITY)                        │
└─────────────────────────────────────────────────────────────┘
```

If no configuration file is found, the application falls back to environment-only mode.

## Configuration Groups

- **Server**: `HOST`, `PORT`, `DEBUG`, `ENVIRONMENT`, `CORS_ORIGINS`, `DOCS_ENABLED`
- **Database**: `MONGODB_URL`, `MONGODB_DATABASE`, credentials and timeouts (milliseconds)
- **Identity**: `SECRET_KEY`, `ALGORITHM`, `USERNAME_CLAIM`
- **Submission Feed**: `LEETCODE_*` (endpoint, timeout, cache TTL and size, fetch limit)
- **Scheduler**: `REVISION_*` (fixed zone offset, auto-enroll lookback, feed source, one-shot sources)

## Usage

```python
from revision_scheduler.config import settings

timeout = settings.LEETCODE_TIMEOUT_SECONDS
zone = settings.revision_timezone
```

Note:
    This module must not import the logging manager; the logging manager reads
    `DEFAULT_LOG_LEVEL` from here.
"""

import os
from datetime import timedelta, timezone
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
REVISION_FILENAME: str = ".revision"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "REVISION_SCHEDULER_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determines the configuration file path based on a predefined precedence order.

    1.  **Environment Variable**: `REVISION_SCHEDULER_CONFIG_PATH` (if set and file exists).
    2.  **Revision Config**: `.revision` file in the project root directory.
    3.  **Dotenv Config**: `.env` file in the project root directory.
    4.  **Fallback**: `None`, triggering environment-variable-only mode.

    Returns:
        Optional[str]: The absolute path to the configuration file, or `None` if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    revision_path: Path = PROJECT_ROOT / REVISION_FILENAME
    if revision_path.exists():
        return str(revision_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=True)


class Settings(BaseSettings):
    """
    Application configuration settings model.

    **Configuration Groups:**
    *   **Server**: Host, port, debug mode, CORS.
    *   **Database**: MongoDB connection details.
    *   **Identity**: JWT verification for the already-authenticated caller.
    *   **Submission Feed**: LeetCode GraphQL endpoint, timeout and cache policy.
    *   **Scheduler**: Fixed civil time zone and reconciliation windows.

    **Validation:**
    Timeouts, limits and windows must be positive; the zone offset must be a real
    UTC offset (within ±14 hours).
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # Server configuration
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    DOCS_ENABLED: bool = True

    # MongoDB configuration
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "revision_scheduler"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None

    # Identity (tokens are issued by the identity service, only verified here)
    SECRET_KEY: SecretStr = SecretStr("")
    ALGORITHM: str = "HS256"
    USERNAME_CLAIM: str = "leetcode_username"

    # Logging
    DEFAULT_LOG_LEVEL: str = "INFO"

    # Submission feed (LeetCode)
    LEETCODE_GRAPHQL_URL: str = "https://leetcode.com/graphql"
    LEETCODE_PROBLEM_URL_TEMPLATE: str = "https://leetcode.com/problems/{slug}/"
    LEETCODE_TIMEOUT_SECONDS: float = 12.0
    LEETCODE_CACHE_TTL_SECONDS: float = 10.0
    LEETCODE_CACHE_MAX_ENTRIES: int = 250
    LEETCODE_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123 Safari/537.36"
    )
    LEETCODE_RECENT_SUBMISSIONS_LIMIT: int = 120

    # Scheduler
    REVISION_TIMEZONE_OFFSET_MINUTES: int = 330  # IST, no DST
    REVISION_AUTO_ENROLL_LOOKBACK_DAYS: int = 7
    REVISION_FEED_SOURCE: str = "leetcode"
    REVISION_ONE_SHOT_SOURCES: str = "leetcode_star_week"

    @field_validator(
        "MONGODB_CONNECTION_TIMEOUT",
        "MONGODB_SERVER_SELECTION_TIMEOUT",
        "LEETCODE_CACHE_MAX_ENTRIES",
        "LEETCODE_RECENT_SUBMISSIONS_LIMIT",
        "REVISION_AUTO_ENROLL_LOOKBACK_DAYS",
    )
    @classmethod
    def _must_be_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("LEETCODE_TIMEOUT_SECONDS")
    @classmethod
    def _timeout_must_be_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("LEETCODE_TIMEOUT_SECONDS must be positive")
        return value

    @field_validator("LEETCODE_CACHE_TTL_SECONDS")
    @classmethod
    def _ttl_must_not_be_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("LEETCODE_CACHE_TTL_SECONDS must not be negative")
        return value

    @field_validator("REVISION_TIMEZONE_OFFSET_MINUTES")
    @classmethod
    def _offset_must_be_real(cls, value: int) -> int:
        if abs(value) > 14 * 60:
            raise ValueError("REVISION_TIMEZONE_OFFSET_MINUTES must be within ±840")
        return value

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def revision_timezone(self) -> timezone:
        """Fixed civil time zone used for month boundaries and archive keys."""
        return timezone(timedelta(minutes=self.REVISION_TIMEZONE_OFFSET_MINUTES))

    @property
    def one_shot_sources(self) -> List[str]:
        return [s.strip().lower() for s in self.REVISION_ONE_SHOT_SOURCES.split(",") if s.strip()]


# Global settings instance
settings: Settings = Settings()
