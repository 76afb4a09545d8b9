# flightguard/api/assistant.py
#
#   Generative assistant client (OpenAI-compatible chat completions).
#   Takes a structured prompt, returns the raw JSON text of the reply.
#   Validation of that text belongs to the rescheduler.

import json
import logging

import httpx

from config.settings import HTTP_TIMEOUT_SECONDS, OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL
from flightguard.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a flight scheduling assistant for a flight school. "
    "You analyze weather forecasts against training level minimums and suggest "
    "safe alternative flight times. Always respond with valid JSON matching the "
    "requested schema."
)


class GenerativeAssistant:
    """
    Args:
        api_key: bearer token for the completions API
        model: model name, gpt-4o-mini unless configured otherwise
        temperature: sampling temperature, kept low for consistent suggestions
        http_client: optional httpx.Client (tests pass one with a MockTransport)
    """

    def __init__(self, api_key=None, model=OPENAI_MODEL, temperature=0.3,
                 base_url=OPENAI_BASE_URL, timeout=HTTP_TIMEOUT_SECONDS, http_client: httpx.Client = None):
        self.api_key = api_key or OPENAI_API_KEY
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        self.model = model
        self.temperature = temperature
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http_client = http_client or httpx.Client(timeout=timeout)

    def complete(self, prompt: dict) -> str:
        """
        Send the structured prompt and return the completion text.
        Raises:
            UpstreamError: transport failure, timeout, non-2xx status or empty completion
        """
        body = {
            "model": self.model,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps(prompt, default=str)},
            ],
        }
        try:
            response = self.http_client.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise UpstreamError("Generative assistant timed out", upstream="assistant") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"Generative assistant returned HTTP {e.response.status_code}", upstream="assistant"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(f"Generative assistant request failed: {type(e).__name__}",
                                upstream="assistant") from e

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise UpstreamError("Generative assistant returned an empty completion", upstream="assistant")

        usage = payload.get("usage") or {}
        logger.info(f"Assistant completion received ({usage.get('total_tokens', '?')} tokens, model {self.model})")
        return content
