"""Remote vision classifiers that label a camera frame START/MIDWAY/END."""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from typing import Literal, Optional, Tuple

from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field

from repcoach.vision.config import VisionConfig

logger = logging.getLogger(__name__)


class ProviderInitError(RuntimeError):
    """The provider could not be brought up (missing key, bad endpoint...)."""


class PositionAnswer(BaseModel):
    position: Literal["START", "END", "MIDWAY"] = Field(..., description="Current exercise position")


class VisionProvider(ABC):
    """Abstract base for a remote frame classifier."""

    name: str = "base"

    async def start(self) -> None:
        """Acquire clients/connections. Raise ProviderInitError on failure."""
        return None

    @abstractmethod
    async def classify(self, image_data_url: str, prompt: str) -> str:
        """Return the raw text answer for one frame."""

    async def ask(self, image_data_url: str, prompt: str) -> str:
        """Free-text question about a frame (no position schema)."""
        return await self.classify(image_data_url, prompt)

    async def close(self) -> None:
        return None


def get_vision_llm(
    model: str,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    cfg: Optional[VisionConfig] = None,
) -> ChatOpenAI:
    cfg = cfg or VisionConfig()
    kwargs = {}
    if api_key:
        kwargs["api_key"] = api_key
    if base_url:
        kwargs["base_url"] = base_url
    # temperature 0 + fixed seed for repeatable labels
    return ChatOpenAI(
        model=model,
        temperature=cfg.temperature,
        seed=cfg.seed,
        max_tokens=cfg.max_completion_tokens,
        max_retries=0,
        **kwargs,
    )


def _frame_message(image_data_url: str, prompt: str) -> HumanMessage:
    return HumanMessage(content=[
        {"type": "text", "text": prompt},
        {"type": "image_url", "image_url": {"url": image_data_url}},
    ])


class ChatVisionProvider(VisionProvider):
    """
    Vision classifier on any OpenAI-compatible chat endpoint.

    With structured=True the model is forced into the PositionAnswer schema;
    otherwise the free-text reply is returned for parse_position().
    """

    def __init__(
        self,
        name: str,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        structured: bool = False,
        cfg: Optional[VisionConfig] = None,
    ):
        self.name = name
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.structured = structured
        self.cfg = cfg or VisionConfig()
        self._llm = None
        self._chat: Optional[ChatOpenAI] = None

    async def start(self) -> None:
        if self._llm is not None:
            return
        try:
            chat = get_vision_llm(self.model, self.api_key, self.base_url, self.cfg)
            llm = chat
            if self.structured:
                llm = chat.with_structured_output(PositionAnswer, method="json_schema", strict=True)
        except Exception as e:
            raise ProviderInitError(f"{self.name}: {e}") from e
        self._chat = chat
        self._llm = llm
        logger.info("vision provider %s ready (model=%s)", self.name, self.model)

    async def classify(self, image_data_url: str, prompt: str) -> str:
        if self._llm is None:
            await self.start()
        res = await self._llm.ainvoke([_frame_message(image_data_url, prompt)])
        if isinstance(res, PositionAnswer):
            return res.position
        return (getattr(res, "content", "") or "").strip()

    async def ask(self, image_data_url: str, prompt: str) -> str:
        if self._chat is None:
            await self.start()
        res = await self._chat.ainvoke([_frame_message(image_data_url, prompt)])
        return (getattr(res, "content", "") or "").strip()

    async def close(self) -> None:
        self._llm = None
        self._chat = None


def build_default_providers(cfg: VisionConfig) -> Tuple[VisionProvider, Optional[VisionProvider]]:
    primary = ChatVisionProvider(
        name="primary",
        model=cfg.primary_model,
        api_key=cfg.primary_api_key,
        base_url=cfg.primary_base_url,
        structured=False,
        cfg=cfg,
    )
    fallback = None
    if cfg.enable_fallback:
        fallback = ChatVisionProvider(
            name="fallback",
            model=cfg.fallback_model,
            api_key=cfg.fallback_api_key,
            structured=True,
            cfg=cfg,
        )
    return primary, fallback
