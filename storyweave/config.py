from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_DEFAULT_LOCAL_STORE = "./.storyweave/game-state.json"


class CustomGameMode(BaseModel):
    name: str = ""
    description: str = ""
    prompt: str = ""


class Settings(BaseSettings):
    env: str = "dev"

    llm_base_url: str = "https://api.openai.com"
    llm_chat_path: str = "/v1/chat/completions"
    llm_api_key: str = ""
    llm_model: str = "gpt-3.5-turbo"
    llm_stream_enabled: bool = True
    llm_timeout_s: float = 60.0
    llm_connect_timeout_s: float = 5.0

    story_language: Literal["zh", "en"] = "zh"
    story_max_choices: int = Field(default=4, ge=1, le=8)
    story_length: Literal["short", "medium", "long"] = "medium"
    custom_game_modes: dict[str, CustomGameMode] = Field(default_factory=dict)

    context_max_history_items: int = Field(default=20, ge=1)
    context_max_choice_history: int = Field(default=50, ge=1)
    context_enable_compression: bool = True

    local_store_path: str = DEV_DEFAULT_LOCAL_STORE
    remote_database_url: str = ""
    player_id: str = ""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def chat_completions_url(base_url: str, path: str) -> str:
    base = str(base_url or "").strip().rstrip("/")
    chat_path = str(path or "").strip()
    if not chat_path.startswith("/"):
        chat_path = f"/{chat_path}"
    return f"{base}{chat_path}"


def remote_store_enabled(config: Settings) -> bool:
    return bool(str(config.remote_database_url or "").strip())


settings = Settings()
