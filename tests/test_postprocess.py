import json

import httpx
import pytest

from voxtray.credentials import CredentialVault
from voxtray.errors import (
    AuthenticationFailed,
    PostProcessingFailed,
    ProviderUnavailable,
)
from voxtray.models import LlmProvider, Mode
from voxtray.postprocess import (
    ANTHROPIC_VERSION,
    AnthropicBackend,
    OllamaBackend,
    PostProcessingEngine,
    render_prompt,
)


def test_render_prompt_fills_placeholders():
    assert render_prompt("Summarize: {{transcript}}", "hello world") == "Summarize: hello world"


def test_render_prompt_keeps_unknown_placeholders():
    assert render_prompt("{{foo}} {{transcript}}", "hi") == "{{foo}} hi"


def test_render_prompt_is_single_pass():
    result = render_prompt("{{transcript}} / {{context}}", "say {{context}}", context="clip")
    assert result == "say {{context}} / clip"


def test_ollama_backend_posts_generate_request():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": "  tidy text \n"})

    backend = OllamaBackend("http://ollama:11434/", transport=httpx.MockTransport(handler))
    assert backend.complete("prompt", "llama3.2") == "tidy text"
    assert seen["url"] == "http://ollama:11434/api/generate"
    assert seen["body"] == {"model": "llama3.2", "prompt": "prompt", "stream": False}


def test_ollama_unreachable_is_provider_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    backend = OllamaBackend(transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderUnavailable):
        backend.complete("prompt", "llama3.2")


def test_ollama_server_error_is_post_processing_failure():
    backend = OllamaBackend(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="oops")))
    with pytest.raises(PostProcessingFailed):
        backend.complete("prompt", "llama3.2")


def test_anthropic_requires_key():
    backend = AnthropicBackend(CredentialVault(service="voxtray-test"))
    with pytest.raises(AuthenticationFailed):
        backend.complete("prompt", "claude-3-5-haiku-latest")


def test_anthropic_sends_key_and_parses_content():
    vault = CredentialVault(service="voxtray-test")
    vault.save("anthropic", "sk-ant-test")
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "Dear team,"}]})

    backend = AnthropicBackend(vault, transport=httpx.MockTransport(handler))
    assert backend.complete("prompt", "claude-3-5-haiku-latest") == "Dear team,"
    assert seen["headers"]["x-api-key"] == "sk-ant-test"
    assert seen["headers"]["anthropic-version"] == ANTHROPIC_VERSION
    assert seen["body"]["messages"] == [{"role": "user", "content": "prompt"}]


def test_anthropic_rejected_key():
    vault = CredentialVault(service="voxtray-test")
    vault.save("anthropic", "sk-ant-bad")
    backend = AnthropicBackend(vault, transport=httpx.MockTransport(lambda request: httpx.Response(401)))
    with pytest.raises(AuthenticationFailed):
        backend.complete("prompt", "claude-3-5-haiku-latest")


class EchoBackend:
    def __init__(self, reply=None):
        self.reply = reply
        self.prompts = []

    def complete(self, prompt, model):
        self.prompts.append(prompt)
        return prompt if self.reply is None else self.reply


def test_engine_renders_mode_template():
    backend = EchoBackend()
    engine = PostProcessingEngine(CredentialVault(), backends={LlmProvider.OLLAMA: backend})
    mode = Mode(key="m", name="M", ai_processing=True, llm_provider="ollama", llm_model="llama3.2",
                prompt_template="Context: {{context}} Text: {{transcript}} ({{language}})")

    assert engine.process("hi", mode, context="clip", language="en") == "Context: clip Text: hi (en)"


def test_engine_rejects_empty_output_and_unknown_provider():
    engine = PostProcessingEngine(CredentialVault(), backends={LlmProvider.OLLAMA: EchoBackend(reply="")})
    mode = Mode(key="m", name="M", llm_provider="ollama", llm_model="x", prompt_template="{{transcript}}")
    with pytest.raises(PostProcessingFailed):
        engine.process("hi", mode)
    with pytest.raises(ProviderUnavailable):
        engine.backend("mistral")
