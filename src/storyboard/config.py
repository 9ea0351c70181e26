"""
Runtime settings loaded from the environment and .env files.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .imagegen import IMAGE_URL
from .prompts import DEFAULT_MODEL, DEFAULT_STYLE
from .batching import BATCH_CONCURRENCY, CHUNK_SIZE

logger = logging.getLogger("storyboard")


def load_env() -> None:
    """Load .env from the project root, falling back to the working directory."""
    project_root = Path(__file__).parent.parent.parent
    env_path = project_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}; using {default}")
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}; using {default}")
        return default


@dataclass
class Settings:
    openai_api_key: str | None = None
    text_model: str = DEFAULT_MODEL
    chunk_size: int = CHUNK_SIZE
    concurrency: int = BATCH_CONCURRENCY
    image_url: str = IMAGE_URL
    image_tokens: str = ""
    request_timeout: float = 60.0
    style: str = DEFAULT_STYLE

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (after loading .env)."""
        load_env()
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            text_model=os.getenv("STORYBOARD_TEXT_MODEL") or DEFAULT_MODEL,
            chunk_size=_int_env("STORYBOARD_CHUNK_SIZE", CHUNK_SIZE),
            concurrency=_int_env("STORYBOARD_CONCURRENCY", BATCH_CONCURRENCY),
            image_url=os.getenv("STORYBOARD_IMAGE_URL") or IMAGE_URL,
            image_tokens=os.getenv("STORYBOARD_IMAGE_TOKENS", ""),
            request_timeout=_float_env("STORYBOARD_TIMEOUT", 60.0),
            style=os.getenv("STORYBOARD_STYLE") or DEFAULT_STYLE,
        )
