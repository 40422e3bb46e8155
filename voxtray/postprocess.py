"""LLM post-processing of transcripts."""

from __future__ import annotations

import logging
import re
from typing import Dict, Optional, Protocol

import httpx

from .credentials import CredentialVault
from .errors import (
    AuthenticationFailed,
    PostProcessingFailed,
    ProviderTimeout,
    ProviderUnavailable,
)
from .models import LlmProvider, Mode

LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0
MAX_TOKENS = 2048
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


def render_prompt(template: str, transcript: str, context: str = "", language: str = "") -> str:
    """Fill ``{{transcript}}``, ``{{context}}`` and ``{{language}}`` in one pass.

    Any other ``{{name}}`` is left as written so typos stay visible.
    """

    values = {"transcript": transcript, "context": context, "language": language}
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


class CompletionBackend(Protocol):
    def complete(self, prompt: str, model: str) -> str:
        """Return the model's reply to a single user prompt."""


def _raise_for_response(provider: str, response: httpx.Response) -> None:
    if response.status_code in (401, 403):
        raise AuthenticationFailed(f"{provider} rejected the API key ({response.status_code})")
    if response.is_error:
        raise PostProcessingFailed(f"{provider} error ({response.status_code}): {response.text}")


class _HttpBackend:
    name = "provider"

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._timeout = timeout
        self._transport = transport

    def _post(self, url: str, payload: dict, headers: Optional[dict] = None) -> dict:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(f"{self.name} request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailable(f"{self.name} is unreachable: {exc}") from exc
        _raise_for_response(self.name, response)
        try:
            return response.json()
        except ValueError as exc:
            raise PostProcessingFailed(f"Failed to parse {self.name} response: {exc}") from exc


class OllamaBackend(_HttpBackend):
    """Local LLM daemon."""

    name = "Ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        super().__init__(timeout, transport)
        self.base_url = base_url.rstrip("/")

    def complete(self, prompt: str, model: str) -> str:
        payload = self._post(
            f"{self.base_url}/api/generate",
            {"model": model, "prompt": prompt, "stream": False},
        )
        response = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(response, str):
            raise PostProcessingFailed("Ollama returned no response text")
        return response.strip()


class AnthropicBackend(_HttpBackend):
    name = "Anthropic"

    def __init__(
        self,
        credentials: CredentialVault,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        super().__init__(timeout, transport)
        self._credentials = credentials

    def complete(self, prompt: str, model: str) -> str:
        api_key = self._credentials.get(LlmProvider.ANTHROPIC.value)
        if not api_key:
            raise AuthenticationFailed("An Anthropic API key is required for this provider.")
        payload = self._post(
            ANTHROPIC_URL,
            {
                "model": model,
                "max_tokens": MAX_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            },
            headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
        )
        try:
            return payload["content"][0]["text"].strip()
        except (KeyError, IndexError, TypeError) as exc:
            raise PostProcessingFailed("No response from Anthropic") from exc


class OpenAIBackend:
    """Chat completions through the `openai` client."""

    def __init__(self, credentials: CredentialVault, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._credentials = credentials
        self._timeout = timeout

    def complete(self, prompt: str, model: str) -> str:
        try:
            import openai
        except Exception as exc:  # pragma: no cover - optional dependency
            raise ProviderUnavailable("The `openai` package is required for this provider.") from exc

        api_key = self._credentials.get(LlmProvider.OPENAI.value)
        if not api_key:
            raise AuthenticationFailed("An OpenAI API key is required for this provider.")

        client = openai.OpenAI(api_key=api_key, timeout=self._timeout, max_retries=0)
        try:
            response = client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=MAX_TOKENS,
            )
        except openai.AuthenticationError as exc:
            raise AuthenticationFailed(f"OpenAI rejected the API key: {exc}") from exc
        except openai.APITimeoutError as exc:
            raise ProviderTimeout(f"OpenAI request timed out: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise ProviderUnavailable(f"OpenAI is unreachable: {exc}") from exc
        except openai.APIError as exc:
            raise PostProcessingFailed(f"OpenAI error: {exc}") from exc

        if not response.choices or response.choices[0].message.content is None:
            raise PostProcessingFailed("No response from OpenAI")
        return response.choices[0].message.content.strip()


class PostProcessingEngine:
    """Render a mode's prompt and send it to the mode's LLM provider."""

    def __init__(
        self,
        credentials: CredentialVault,
        ollama_url: str = "http://localhost:11434",
        timeout: float = DEFAULT_TIMEOUT,
        backends: Optional[Dict[LlmProvider, CompletionBackend]] = None,
    ) -> None:
        self._backends: Dict[LlmProvider, CompletionBackend] = backends or {
            LlmProvider.OLLAMA: OllamaBackend(ollama_url, timeout),
            LlmProvider.OPENAI: OpenAIBackend(credentials, timeout),
            LlmProvider.ANTHROPIC: AnthropicBackend(credentials, timeout),
        }

    def backend(self, provider: str) -> CompletionBackend:
        try:
            return self._backends[LlmProvider(provider)]
        except (ValueError, KeyError):
            raise ProviderUnavailable(f"Unknown LLM provider: {provider}") from None

    def set_ollama_url(self, url: str) -> None:
        backend = self._backends.get(LlmProvider.OLLAMA)
        if isinstance(backend, OllamaBackend):
            backend.base_url = url.rstrip("/")

    def process(self, transcript: str, mode: Mode, context: str = "", language: str = "") -> str:
        backend = self.backend(mode.llm_provider)
        if "{{transcript}}" not in mode.prompt_template:
            LOG.warning("Prompt template of mode %s has no {{transcript}} placeholder", mode.key)
        prompt = render_prompt(mode.prompt_template, transcript, context, language)
        LOG.info("Post-processing %d chars with %s/%s", len(transcript), mode.llm_provider, mode.llm_model)
        output = backend.complete(prompt, mode.llm_model)
        if not output:
            raise PostProcessingFailed(f"{mode.llm_provider} returned an empty response")
        return output
