"""
Comfy Compiler - Configuration Management
==========================================

Configuration using pydantic-settings for type-safe environment variable parsing.
All settings can be overridden via environment variables with COMFY_COMPILER_ prefix.

Example:
    COMFY_COMPILER_LOGGING__LEVEL=DEBUG
    COMFY_COMPILER_COMPILER__BYPASS_MAX_DEPTH=20
    COMFY_COMPILER_COMPILER__INJECTED_ID_FLOOR=500

Features:
- Type-safe configuration with automatic validation
- Nested config via double underscore delimiter (__)
- .env file support
- Cached settings instance via @lru_cache
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "reload_settings",
    # Sub-configs
    "LoggingConfig",
    "CompilerConfig",
]


# =============================================================================
# CONFIGURATION CLASSES
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="COMFY_COMPILER_LOGGING__",
        env_ignore_empty=True,
    )

    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file: str | None = None
    json_output: bool = False


class CompilerConfig(BaseSettings):
    """Graph compiler tuning."""

    model_config = SettingsConfigDict(
        env_prefix="COMFY_COMPILER_COMPILER__",
        env_ignore_empty=True,
    )

    # Hops followed through consecutive bypassed nodes before giving up
    bypass_max_depth: int = 10
    # Injected node ids start above max(existing ids, floor - 1)
    injected_id_floor: int = 100
    modifier_class_type: str = "LoraLoaderModelOnly"
    model_source_class_types: list[str] = ["CheckpointLoaderSimple", "UNETLoader"]
    sampling_class_type: str = "ModelSamplingSD3"
    advanced_sampler_class_type: str = "KSamplerAdvanced"
    max_chain_length: int = 5
    min_strength: float = 0.0
    max_strength: float = 2.0
    default_strength: float = 1.0


class Settings(BaseSettings):
    """
    Main settings container using pydantic-settings.

    Nested settings use double underscore (__) as delimiter.

    Usage:
        from comfy_compiler.config import get_settings

        settings = get_settings()
        print(settings.compiler.bypass_max_depth)
    """

    model_config = SettingsConfigDict(
        env_prefix="COMFY_COMPILER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        env_nested_delimiter="__",
        extra="ignore",
    )

    logging: LoggingConfig = LoggingConfig()
    compiler: CompilerConfig = CompilerConfig()

    # Package info
    version: str = "1.0.0"
    name: str = "comfy_compiler"

    def to_dict(self) -> dict:
        """Export settings as dictionary."""
        return {
            "version": self.version,
            "logging": {
                "level": self.logging.level,
                "json_output": self.logging.json_output,
            },
            "compiler": self.compiler.model_dump(),
        }


# =============================================================================
# CACHED SETTINGS INSTANCE
# =============================================================================


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Call get_settings.cache_clear() (or reload_settings()) to re-read the environment.
    """
    return Settings()


settings = get_settings()


def reload_settings() -> Settings:
    """Reload all settings from environment variables."""
    get_settings.cache_clear()
    global settings
    settings = get_settings()
    return settings
