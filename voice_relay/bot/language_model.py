"""
Language model client used by the turn engine.

The model is reached through the Hugging Face inference API. Each session is
handed a model instance at construction time; nothing here is global.
"""

import logging
from typing import Optional, Protocol

import httpx

from voice_relay.config.constants import DEFAULT_HF_API_URL, DEFAULT_HF_MODEL, LOGGER_NAME
from voice_relay.errors import TurnGenerationFailure

logger = logging.getLogger(LOGGER_NAME)

REQUEST_TIMEOUT = 30.0  # seconds
TOP_P = 0.9


class LanguageModel(Protocol):
    async def generate(self, prompt: str, temperature: float, max_new_tokens: int) -> str:
        ...


class HuggingFaceLanguageModel:
    """
    Text generation over the Hugging Face inference API.

    Args:
        api_key: Hugging Face access token
        api_url: Base URL of the inference API
        model: Model repository id, e.g. ``microsoft/DialoGPT-large``
        client: Optional shared ``httpx.AsyncClient``; one is created if omitted
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_HF_API_URL,
        model: str = DEFAULT_HF_MODEL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.endpoint = f"{api_url.rstrip('/')}/models/{model}"
        self.model = model
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        self._owns_client = client is None

    async def generate(self, prompt: str, temperature: float, max_new_tokens: int) -> str:
        """
        Generate a continuation of ``prompt``.

        Returns:
            str: The generated text, stripped

        Raises:
            TurnGenerationFailure: on transport errors, non-2xx responses or a body
                without ``generated_text``
        """
        payload = {
            "inputs": prompt,
            "parameters": {
                "max_new_tokens": max_new_tokens,
                "temperature": temperature,
                "do_sample": True,
                "top_p": TOP_P,
                "return_full_text": False,
            },
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise TurnGenerationFailure(f"Language model request failed: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            raise TurnGenerationFailure(
                f"Language model API error: {response.status_code}",
                {"status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TurnGenerationFailure(f"Language model returned invalid JSON: {e}") from e

        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise TurnGenerationFailure("Language model returned an unexpected body")

        generated = data[0].get("generated_text")
        if not isinstance(generated, str):
            raise TurnGenerationFailure("Language model response has no generated_text")

        logger.debug(f"Language model generated {len(generated)} characters")
        return generated.strip()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
