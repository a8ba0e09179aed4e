"""
集中式配置（环境变量/ .env），保障可测性与可控性。
"""
# @file purpose: Centralized settings using Pydantic Settings.

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DISTRO_OPS_", env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {message}"
    )

    # gate behavior
    treat_transitioning_as_running: bool = True
    refresh_after_stop: bool = True
    serialize_per_target: bool = False

    # CLI: answer the stop confirmation without prompting
    confirm_by_default: bool = False


settings = Settings()
