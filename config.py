# config.py
"""
Configuration management for the commission engine.
Loads from .env, exposes typed values through a class-level store.
"""
import os
import logging
from typing import Any, Dict
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        url = Config.get(Config.DATABASE_URL)

        # Set dynamic value
        Config.set(Config.COMPENSATION_PLAN_PATH, "plans/2026.json")
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # Compensation plan
    COMPENSATION_PLAN_PATH = "COMPENSATION_PLAN_PATH"

    # Genealogy
    DOWNLINE_TREE_DEPTH = "DOWNLINE_TREE_DEPTH"

    # Background jobs
    RECONCILE_INTERVAL_MINUTES = "RECONCILE_INTERVAL_MINUTES"
    RANK_CHECK_HOUR = "RANK_CHECK_HOUR"

    # System
    LOG_LEVEL = "LOG_LEVEL"

    # ═══════════════════════════════════════════════════════════════════════
    # CRITICAL KEYS (must be present)
    # ═══════════════════════════════════════════════════════════════════════

    CRITICAL_KEYS = [
        DATABASE_URL,
    ]

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file and process environment.

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                "sqlite:///commissions.db"
            )

            # Compensation plan (JSON file); built-in plan is used when unset
            cls._config[cls.COMPENSATION_PLAN_PATH] = os.getenv("COMPENSATION_PLAN_PATH") or None

            # Genealogy
            cls._config[cls.DOWNLINE_TREE_DEPTH] = int(os.getenv("DOWNLINE_TREE_DEPTH", "3"))

            # Background jobs
            cls._config[cls.RECONCILE_INTERVAL_MINUTES] = int(
                os.getenv("RECONCILE_INTERVAL_MINUTES", "10")
            )
            cls._config[cls.RANK_CHECK_HOUR] = int(os.getenv("RANK_CHECK_HOUR", "0"))

            # System
            cls._config[cls.LOG_LEVEL] = os.getenv("LOG_LEVEL", "INFO").upper()

            cls._initialized = True
            logger.info("Configuration loaded from environment successfully")

        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

    @classmethod
    def validate_critical_keys(cls) -> None:
        """
        Validate that all critical configuration keys are present.

        Raises:
            ConfigurationError: If any critical key is missing
        """
        missing = []
        for key in cls.CRITICAL_KEYS:
            if not cls.get(key):
                missing.append(key)

        if missing:
            error_msg = f"Missing critical configuration keys: {', '.join(missing)}"
            logger.critical(error_msg)
            raise ConfigurationError(error_msg)

        logger.info("All critical configuration keys validated")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Set configuration value (for dynamic updates).

        Args:
            key: Configuration key
            value: New value
            source: Source of the update (for logging)
        """
        cls._config[key] = value
        logger.debug(f"Config updated: {key} = {value} (source: {source})")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized
