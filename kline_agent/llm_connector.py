"""OpenAI-compatible chat client used by every analysis and decision stage."""

import json
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from kline_agent.errors import StructuredOutputError

logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split('\n')
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        cleaned = '\n'.join(lines).strip()
    return cleaned


class LLMConnector:
    """Async wrapper over the chat completions API."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        default_model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        client: Optional[Any] = None,
    ):
        """
        Initialize LLM connector.

        Args:
            api_key: API key for the OpenAI-compatible endpoint
            base_url: Alternative endpoint (DeepSeek, local gateway, ...)
            default_model: Model used when a call does not name one
            temperature: Sampling temperature for every call
            client: Pre-built AsyncOpenAI client (tests inject fakes here)
        """
        if client is None and not api_key:
            raise ValueError("LLM API key is required")
        self.client = client if client is not None else AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.default_model = default_model
        self.temperature = temperature

    @staticmethod
    def _content(response: Any) -> str:
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Plain text completion.

        Args:
            system_prompt: System message
            user_prompt: User message
            model: Model name (defaults to the connector's default model)
            max_tokens: Optional completion cap

        Returns:
            Response text ("" when the model returned nothing)
        """
        model = model or self.default_model
        kwargs: Dict[str, Any] = {}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        response = await self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            **kwargs,
        )
        content = self._content(response)
        if not content:
            logger.warning(f"Model {model} returned empty content")
        return content

    async def chat_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        JSON-object completion.

        Raises:
            StructuredOutputError: If the response is not a JSON object
        """
        model = model or self.default_model
        response = await self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )
        raw = self._content(response)
        try:
            data = json.loads(strip_code_fences(raw) or "{}")
        except json.JSONDecodeError as e:
            logger.error(f"JSON parsing failed for model {model}: {e}. Raw response: {raw}")
            raise StructuredOutputError(f"Model {model} returned invalid JSON", raw=raw) from e
        if not isinstance(data, dict):
            logger.error(f"Parsed JSON is not an object. Type: {type(data)}. Raw response: {raw}")
            raise StructuredOutputError(f"Model {model} returned {type(data).__name__}, expected object", raw=raw)
        return data

    async def analyze_image(
        self,
        system_prompt: str,
        user_prompt: str,
        image: str,
        model: Optional[str] = None,
    ) -> str:
        """
        Vision completion over one chart image.

        Args:
            image: http(s) URL or base64-encoded image data
        """
        model = model or self.default_model
        url = image if image.startswith("http") else f"data:image/png;base64,{image}"
        response = await self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": user_prompt},
                        {"type": "image_url", "image_url": {"url": url}},
                    ],
                },
            ],
            temperature=self.temperature,
        )
        content = self._content(response)
        if not content:
            logger.warning(f"Model {model} returned empty image analysis")
        return content

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
