"""Modell-Adapter: übersetzen den kanonischen Chatverlauf in das Request-
Format einer Modellfamilie und die Antwort zurück in reinen Text.

Die Auswahl erfolgt allein über die Modell-ID (Regex-Pattern, erster
Treffer gewinnt). Unbekannte IDs landen beim generischen Prompt-Adapter.

Rollen: Protokolle mit nur zwei Rollen (Anthropic Messages, Bedrock
Converse) kennen kein `system`. Systemnachrichten werden dort bewusst auf
`assistant` abgebildet statt verworfen oder abgelehnt; das ist eine
verlustbehaftete Abbildung.

Die Rollenabfolge wird nicht erzwungen. Nach einem fehlgeschlagenen
Modellaufruf ist die User-Nachricht bereits gespeichert, der Verlauf kann
dann zwei User-Nachrichten hintereinander enthalten; zusammen mit der
system->assistant-Abbildung auch zwei assistant-Nachrichten. Converse und
Anthropic Messages lehnen solche Folgen ab, weitere Turns dieser Session
scheitern dann für diese Modellfamilien.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from app.core.models import ChatMessage

INVOKE_MODEL_API = "bedrock-invoke"
CONVERSE_API = "bedrock-converse"
OPENAI_API = "openai"


@dataclass(frozen=True)
class GenerationConfig:
    max_tokens: int = 1000
    temperature: float = 0.7
    top_p: float = 0.9


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cache_read: int = 0
    cache_write: int = 0

    def as_attributes(self) -> Dict[str, int]:
        return {
            "llm.input_tokens": self.input_tokens,
            "llm.output_tokens": self.output_tokens,
            "llm.total_tokens": self.total_tokens,
            "llm.cache_read": self.cache_read,
            "llm.cache_write": self.cache_write,
        }


def _count(source: Any, key: str) -> int:
    if not isinstance(source, dict):
        return 0
    value = source.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _usage(input_tokens: int, output_tokens: int, total_tokens: int = 0, cache_read: int = 0, cache_write: int = 0) -> TokenUsage:
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens or input_tokens + output_tokens,
        cache_read=cache_read,
        cache_write=cache_write,
    )


def two_role(role: str) -> str:
    """user bleibt user; assistant und system werden zu assistant."""
    return "user" if role == "user" else "assistant"


class ModelAdapter:
    """Basis für alle Adapter: Request bauen, Text und Usage extrahieren."""

    name = "base"
    api = INVOKE_MODEL_API
    patterns: Sequence[str] = ()

    def __init__(self, generation: Optional[GenerationConfig] = None):
        self.generation = generation or GenerationConfig()
        self._compiled = [re.compile(pattern, re.IGNORECASE) for pattern in self.patterns]

    def matches(self, model_id: str) -> bool:
        return any(pattern.search(model_id) for pattern in self._compiled)

    def build_request(self, model_id: str, history: Sequence[ChatMessage]) -> Dict[str, Any]:
        raise NotImplementedError

    def parse_response(self, body: Dict[str, Any]) -> str:
        raise NotImplementedError

    def extract_usage(self, body: Dict[str, Any]) -> TokenUsage:
        return TokenUsage()


class AnthropicMessagesAdapter(ModelAdapter):
    name = "anthropic-messages"
    patterns = (r"anthropic\.", r"claude")

    def build_request(self, model_id, history):
        return {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.generation.max_tokens,
            "temperature": self.generation.temperature,
            "top_p": self.generation.top_p,
            "messages": [{"role": two_role(msg.role), "content": msg.content} for msg in history],
        }

    def parse_response(self, body):
        blocks = body.get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type", "text") == "text")

    def extract_usage(self, body):
        usage = body.get("usage")
        return _usage(
            _count(usage, "input_tokens"),
            _count(usage, "output_tokens"),
            cache_read=_count(usage, "cache_read_input_tokens"),
            cache_write=_count(usage, "cache_creation_input_tokens"),
        )


class ConverseAdapter(ModelAdapter):
    """Bedrock Converse API; die Modell-ID kann mit `converse:` erzwungen werden."""

    name = "converse"
    api = CONVERSE_API
    patterns = (r"^converse:", r"amazon\.nova")

    def build_request(self, model_id, history):
        return {
            "modelId": re.sub(r"^converse:", "", model_id),
            "messages": [
                {"role": two_role(msg.role), "content": [{"text": msg.content}]} for msg in history
            ],
            "inferenceConfig": {
                "maxTokens": self.generation.max_tokens,
                "temperature": self.generation.temperature,
                "topP": self.generation.top_p,
            },
        }

    def parse_response(self, body):
        content = ((body.get("output") or {}).get("message") or {}).get("content") or []
        return content[0].get("text", "") if content else ""

    def extract_usage(self, body):
        usage = body.get("usage")
        return _usage(
            _count(usage, "inputTokens"),
            _count(usage, "outputTokens"),
            _count(usage, "totalTokens"),
            _count(usage, "cacheReadInputTokens"),
            _count(usage, "cacheWriteInputTokens"),
        )


class LlamaAdapter(ModelAdapter):
    name = "llama"
    patterns = (r"meta\.llama", r"llama")

    def build_request(self, model_id, history):
        return {
            "prompt": "\n".join(f"<{msg.role}>{msg.content}</{msg.role}>" for msg in history),
            "max_gen_len": self.generation.max_tokens,
            "temperature": self.generation.temperature,
            "top_p": self.generation.top_p,
        }

    def parse_response(self, body):
        return body.get("generation") or ""

    def extract_usage(self, body):
        return _usage(_count(body, "prompt_token_count"), _count(body, "generation_token_count"))


class OpenAIChatAdapter(ModelAdapter):
    """OpenAI Chat Completions; unterstützt system nativ, daher keine Umbenennung."""

    name = "openai-chat"
    api = OPENAI_API
    patterns = (r"^openai[:/]", r"^gpt-")

    def build_request(self, model_id, history):
        return {
            "model": re.sub(r"^openai[:/]", "", model_id),
            "messages": [{"role": msg.role, "content": msg.content} for msg in history],
            "max_tokens": self.generation.max_tokens,
            "temperature": self.generation.temperature,
            "top_p": self.generation.top_p,
        }

    def parse_response(self, body):
        choices = body.get("choices") or []
        if not choices:
            return ""
        return ((choices[0].get("message") or {}).get("content")) or ""

    def extract_usage(self, body):
        usage = body.get("usage")
        details = usage.get("prompt_tokens_details") if isinstance(usage, dict) else None
        return _usage(
            _count(usage, "prompt_tokens"),
            _count(usage, "completion_tokens"),
            _count(usage, "total_tokens"),
            cache_read=_count(details, "cached_tokens"),
        )


class GenericPromptAdapter(ModelAdapter):
    """Fallback für unbekannte Modell-IDs: einfacher Text-Prompt."""

    name = "generic"

    def build_request(self, model_id, history):
        return {
            "prompt": "\n".join(f"{msg.role}: {msg.content}" for msg in history),
            "max_tokens": self.generation.max_tokens,
            "temperature": self.generation.temperature,
        }

    def parse_response(self, body):
        for key in ("completion", "text", "generated_text"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        return ""


class AdapterRegistry:
    """Wählt den Adapter zu einer Modell-ID; neue Familien werden nur registriert."""

    def __init__(self, adapters: Sequence[ModelAdapter] = (), default: Optional[ModelAdapter] = None):
        self._adapters: List[ModelAdapter] = list(adapters)
        self.default = default or GenericPromptAdapter()

    def register(self, adapter: ModelAdapter) -> None:
        self._adapters.append(adapter)

    def resolve(self, model_id: str) -> ModelAdapter:
        for adapter in self._adapters:
            if adapter.matches(model_id):
                return adapter
        return self.default

    def describe(self) -> List[Dict[str, Any]]:
        entries = [
            {"name": adapter.name, "api": adapter.api, "patterns": list(adapter.patterns)}
            for adapter in self._adapters
        ]
        entries.append({"name": self.default.name, "api": self.default.api, "patterns": []})
        return entries


def default_registry(generation: Optional[GenerationConfig] = None) -> AdapterRegistry:
    # Reihenfolge zählt: converse: vor claude, damit "converse:anthropic..." nicht beim Messages-Adapter landet.
    return AdapterRegistry(
        [
            ConverseAdapter(generation),
            OpenAIChatAdapter(generation),
            AnthropicMessagesAdapter(generation),
            LlamaAdapter(generation),
        ],
        default=GenericPromptAdapter(generation),
    )
