"""Language model client used by the healing system."""

import asyncio
import logging
import os
import time

from crewai.llm import LLM
from langchain_ollama import OllamaLLM

from ..core.config import settings
from ..core.metrics import get_metrics_collector

logger = logging.getLogger(__name__)


def get_llm(model_provider: str, model_name: str, temperature: float = 0.3, max_tokens: int = 1000):
    """Get LLM instance based on provider and model name."""
    if model_provider == "local":
        return OllamaLLM(model=model_name, temperature=temperature, num_predict=max_tokens)
    else:
        return LLM(
            api_key=settings.AI_API_KEY or os.getenv("GEMINI_API_KEY"),
            model=f"{model_name}",
            temperature=temperature,
            max_tokens=max_tokens,
            num_retries=5,
        )


class HealingLLMClient:
    """Text-in, text-out access to the configured model backend.

    Model libraries are synchronous, so calls run in the default executor
    to keep the event loop free while a healing cycle waits on the model.
    """

    def __init__(
        self,
        model_provider: str = "online",
        model_name: str = "gemini/gemini-2.5-flash",
        temperature: float = 0.3,
        max_tokens: int = 1000
    ):
        self.model_provider = model_provider
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._llm = None
        self.metrics_collector = get_metrics_collector()

    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_llm(self.model_provider, self.model_name, self.temperature, self.max_tokens)
            logger.info(f"LLM client initialized with {self.model_provider}/{self.model_name}")
        return self._llm

    async def call(self, prompt: str) -> str:
        """Send a prompt and return the raw response text.

        Raises whatever the backend raises; callers decide on fallbacks.
        """
        start = time.time()
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, self._call_sync, prompt)
        except Exception:
            self.metrics_collector.record_ai_call(False, (time.time() - start) * 1000)
            raise
        self.metrics_collector.record_ai_call(True, (time.time() - start) * 1000)
        return response

    def _call_sync(self, prompt: str) -> str:
        llm = self.llm
        if self.model_provider == "local":
            response = llm.invoke(prompt)
        else:
            response = llm.call(prompt)
        if response is None:
            return ""
        return response if isinstance(response, str) else str(getattr(response, "content", response))
