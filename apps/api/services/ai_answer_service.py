import httpx
import logging
from abc import ABC, abstractmethod
from typing import Optional
from config import settings

logger = logging.getLogger(__name__)


class AnswerProvider(ABC):
    """First-pass answer source for newly asked doubts"""

    @abstractmethod
    async def answer(self, question: str) -> str:
        """Return an answer, or an empty string when none could be produced"""


class OllamaAnswerProvider(AnswerProvider):
    """Answers doubts with the configured Ollama model"""

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url or settings.get_ollama_url()
        self.model = model or settings.ollama_model
        self.timeout = timeout or settings.ollama_timeout
        self._transport = transport

    def _build_prompt(self, question: str) -> str:
        return f"""
A student asked: "{question}"

Provide a helpful, precise answer. If it's too complex, suggest asking a professor.
"""

    async def _make_request(self, prompt: str) -> Optional[str]:
        """Make a request to Ollama API"""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/generate",
                    json={
                        "model": self.model,
                        "prompt": prompt,
                        "stream": False,
                        "options": {
                            "temperature": 0.3,
                        }
                    }
                )

                if response.status_code == 200:
                    result = response.json()
                    return result.get("response", "")
                else:
                    logger.error(f"Ollama API error: {response.status_code} - {response.text}")
                    return None

        except httpx.RequestError as e:
            logger.error(f"Ollama request error: {e}")
            return None
        except ValueError as e:
            logger.error(f"Ollama returned an unreadable body: {e}")
            return None

    async def answer(self, question: str) -> str:
        response = await self._make_request(self._build_prompt(question))
        return (response or "").strip()

    async def health_check(self) -> bool:
        """Check if Ollama is reachable"""
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                return response.status_code == 200
        except httpx.RequestError:
            return False


# Global instance
answer_provider = OllamaAnswerProvider()
