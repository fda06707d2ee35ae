"""Runtime settings read from the environment (and a local ``.env``)."""

import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.45
    default_vertical: str = "Dentaire"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_temperature=os.getenv("OPENAI_TEMPERATURE", "0.45"),
        default_vertical=os.getenv("FRONT_DESK_DEFAULT_VERTICAL", "Dentaire"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=os.getenv("PORT", "8000"),
        reload=os.getenv("RELOAD", "0") == "1",
    )
