from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

DEFAULT_CONFIG_FILE = Path("config") / "defaults.toml"


def _config_file_path() -> Path:
    raw = (os.getenv("APP_CONFIG_FILE") or "").strip()
    if raw:
        return Path(raw)
    return DEFAULT_CONFIG_FILE


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://loyalty:loyalty@db:5432/loyalty"
    tz: str = "Asia/Ho_Chi_Minh"
    log_level: str = "INFO"
    admin_panel_token: str = ""
    web_host: str = "0.0.0.0"
    web_port: int = 8080
    life_points_unit: int = 1000
    persistence_retry_attempts: int = 1
    ranking_winners_count: int = 2
    ranking_candidate_pool: int = 20
    ranking_watcher_enabled: bool = True
    ranking_watcher_interval_seconds: int = 3600
    ranking_reward_ids: str = "voucher-1000k,voucher-500k"
    points_history_page_size: int = 20

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=_config_file_path()),
            file_secret_settings,
        )

    def parsed_ranking_reward_ids(self) -> list[str]:
        return [x.strip() for x in self.ranking_reward_ids.split(",") if x.strip()]

    def ranking_reward_id_for_rank(self, rank: int) -> str | None:
        reward_ids = self.parsed_ranking_reward_ids()
        if rank < 1 or rank > len(reward_ids):
            return None
        return reward_ids[rank - 1]


@lru_cache(1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
