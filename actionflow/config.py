import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


@dataclass
class Settings:
    openai_api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    planner_model: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: int = 1000
    narration_temperature: float = 0.5
    planner_temperature: float = 0.1
    tool_config_path: Optional[str] = None
    history_limit: int = 20
    stream_chunk_size: int = 10
    nango_secret_key: Optional[str] = None
    nango_base_url: str = "https://api.nango.dev"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Read settings from the environment after loading a .env file."""
        load_dotenv(dotenv_path)
        return cls(
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            model=os.environ.get("ACTIONFLOW_MODEL", cls.model),
            planner_model=os.environ.get("ACTIONFLOW_PLANNER_MODEL"),
            base_url=os.environ.get("ACTIONFLOW_BASE_URL"),
            max_tokens=_env_int("ACTIONFLOW_MAX_TOKENS", cls.max_tokens),
            narration_temperature=_env_float(
                "ACTIONFLOW_NARRATION_TEMPERATURE", cls.narration_temperature
            ),
            planner_temperature=_env_float(
                "ACTIONFLOW_PLANNER_TEMPERATURE", cls.planner_temperature
            ),
            tool_config_path=os.environ.get("ACTIONFLOW_TOOL_CONFIG"),
            history_limit=_env_int("ACTIONFLOW_HISTORY_LIMIT", cls.history_limit),
            stream_chunk_size=_env_int("ACTIONFLOW_STREAM_CHUNK_SIZE", cls.stream_chunk_size),
            nango_secret_key=os.environ.get("NANGO_SECRET_KEY"),
            nango_base_url=os.environ.get("NANGO_BASE_URL", cls.nango_base_url),
        )
