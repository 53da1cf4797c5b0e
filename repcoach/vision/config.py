from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class VisionConfig:
    failure_threshold: int = 3
    inference_interval_ms: int = 1000
    request_timeout_ms: int = 8000
    init_timeout_ms: int = 10000
    image_size: int = 512
    image_quality: float = 0.7
    enable_fallback: bool = True
    # primary: hosted VL model behind an OpenAI-compatible endpoint
    primary_model: str = "Qwen/Qwen3-VL-30B-A3B-Instruct"
    primary_base_url: Optional[str] = None
    primary_api_key: Optional[str] = None
    # fallback: OpenAI with structured output
    fallback_model: str = "gpt-5-nano"
    fallback_api_key: Optional[str] = None
    temperature: float = 0.0
    seed: int = 42
    max_completion_tokens: int = 100

    @classmethod
    def from_env(cls) -> "VisionConfig":
        d = cls()
        return cls(
            failure_threshold=int(os.getenv("VISION_FAILURE_THRESHOLD", d.failure_threshold)),
            inference_interval_ms=int(os.getenv("VISION_INFERENCE_INTERVAL_MS", d.inference_interval_ms)),
            request_timeout_ms=int(os.getenv("VISION_REQUEST_TIMEOUT_MS", d.request_timeout_ms)),
            init_timeout_ms=int(os.getenv("VISION_INIT_TIMEOUT_MS", d.init_timeout_ms)),
            image_size=int(os.getenv("VISION_IMAGE_SIZE", d.image_size)),
            image_quality=float(os.getenv("VISION_IMAGE_QUALITY", d.image_quality)),
            enable_fallback=_env_bool("VISION_ENABLE_FALLBACK", d.enable_fallback),
            primary_model=os.getenv("VISION_PRIMARY_MODEL", d.primary_model),
            primary_base_url=os.getenv("VISION_PRIMARY_BASE_URL"),
            primary_api_key=os.getenv("VISION_PRIMARY_API_KEY"),
            fallback_model=os.getenv("VISION_FALLBACK_MODEL", d.fallback_model),
            fallback_api_key=os.getenv("OPENAI_API_KEY"),
        )
