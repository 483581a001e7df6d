"""
Language-model clients for Keel.

Every provider implements :meth:`BaseLLMClient.complete` (system prompt + chat messages -> text);
:meth:`BaseLLMClient.respond` adapts that to the engine's :class:`~keel.core.interfaces.LLMClient`
contract.  :class:`RouterLLMClient` picks a provider per request, honouring the request's
provider/model override.

We support these back-ends out of the box:

1. **OpenAI / Anthropic** via their SDKs (requires env keys).
2. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models.
3. **stub** - a deterministic local echo for tests and offline runs.

Additional providers can be added by subclassing :class:`BaseLLMClient` and registering via
:func:`register_llm`.
"""

import json
import logging
from abc import abstractmethod
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Type,
)

import httpx

from keel.config import settings
from keel.core.errors import LLMError
from keel.core.interfaces import LLMClient
from keel.core.schema import (
    HistoryMessage,
    LLMRequest,
    LLMResponse,
)

logger = logging.getLogger(__name__)

Message = Dict[str, str]

# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_LLM_REGISTRY: dict[str, Type["BaseLLMClient"]] = {}


def register_llm(name: str) -> Callable:
    """Decorator to register an LLM client class under *name*."""

    def wrapper(cls: Type["BaseLLMClient"]) -> Type["BaseLLMClient"]:
        cls.provider = name
        _LLM_REGISTRY[name] = cls
        return cls

    return wrapper


def load_llm_client(name: str | None = None, **kwargs: Any) -> "BaseLLMClient":
    """
    Factory that returns an instantiated LLM client.

    Fallback order:
    1. *name* arg
    2. ``settings.LLM_PROVIDER`` env option
    3. default: ``"stub"``
    """
    target = (name or getattr(settings, "LLM_PROVIDER", "stub")).lower()
    cls = _LLM_REGISTRY.get(target)
    if cls is None:
        raise LLMError(f"LLM provider '{target}' is not registered.")
    return cls(**kwargs)


def history_messages(history: List[HistoryMessage]) -> List[Message]:
    """Chat history as role/content dicts; unknown roles are sent as user turns."""
    return [
        {"role": h.role if h.role in ("user", "assistant") else "user", "content": h.content}
        for h in history
    ]


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseLLMClient(LLMClient):
    """A single provider."""

    provider: ClassVar[str] = ""
    default_model: ClassVar[str] = ""

    def __init__(self, model: str | None = None):
        self.model = model or self.default_model

    @abstractmethod
    async def complete(
        self,
        system: str,
        messages: List[Message],
        model: str | None = None,
        temperature: float = 0.2,
    ) -> str:
        """Return the model's reply to *messages* under the *system* prompt."""

    async def respond(self, llm_request: LLMRequest) -> LLMResponse:
        model = llm_request.model or self.model
        messages = history_messages(llm_request.history)
        messages.append({"role": "user", "content": llm_request.query})
        text = await self.complete(llm_request.prompt, messages, model=model)
        return LLMResponse(text=text, provider=self.provider, model=model)


# ---------------------------------------------------------------------------
# Concrete clients
# ---------------------------------------------------------------------------
@register_llm("stub")
class StubLLMClient(BaseLLMClient):
    """Deterministic local client: echoes the request and summarizes tool observations."""

    default_model = "stub"

    async def complete(
        self,
        system: str,
        messages: List[Message],
        model: str | None = None,
        temperature: float = 0.2,
    ) -> str:
        last = messages[-1]["content"] if messages else ""
        return f"[stub] {last}"

    async def respond(self, llm_request: LLMRequest) -> LLMResponse:
        lines = [f"[stub] {llm_request.query}"]
        for obs in llm_request.observations:
            if obs.result is not None:
                payload = json.dumps(obs.result.data, sort_keys=True, default=str)
                lines.append(f"- {obs.tool_name}: {payload}")
            else:
                lines.append(f"- {obs.tool_name}: error={obs.error}")
        return LLMResponse(
            text="\n".join(lines), provider=self.provider, model=llm_request.model or self.model
        )


@register_llm("openai")
class OpenAILLMClient(BaseLLMClient):
    """OpenAI chat completions."""

    default_model = settings.OPENAI_MODEL

    def __init__(self, model: str | None = None, api_key: str | None = None):
        super().__init__(model)
        self._api_key = api_key or settings.OPENAI_API_KEY

    async def complete(
        self,
        system: str,
        messages: List[Message],
        model: str | None = None,
        temperature: float = 0.2,
        response_format: Mapping[str, str] | None = None,
    ) -> str:
        import openai  # pylint: disable=import-outside-toplevel

        if not self._api_key:
            raise LLMError("OpenAI API key not configured")
        client = openai.AsyncOpenAI(api_key=self._api_key)
        extra: Dict[str, Any] = {"response_format": response_format} if response_format else {}
        try:
            resp = await client.chat.completions.create(
                model=model or self.model,
                messages=[  # type: ignore[list-item]
                    {"role": "system", "content": system},
                    *messages,
                ],
                temperature=temperature,
                **extra,
            )
        except openai.OpenAIError as exc:
            logger.error("OpenAI request error: %s", exc)
            raise LLMError(f"Error calling OpenAI: {exc}") from exc

        content = resp.choices[0].message.content
        if not content:
            raise LLMError("Empty response from OpenAI")
        logger.debug("OpenAI response: %s", content)
        return content


@register_llm("anthropic")
class AnthropicLLMClient(BaseLLMClient):
    """Anthropic Claude messages API."""

    default_model = settings.ANTHROPIC_MODEL

    def __init__(self, model: str | None = None, api_key: str | None = None):
        super().__init__(model)
        self._api_key = api_key or settings.ANTHROPIC_API_KEY

    async def complete(
        self,
        system: str,
        messages: List[Message],
        model: str | None = None,
        temperature: float = 0.2,
    ) -> str:
        import anthropic  # pylint: disable=import-outside-toplevel

        if not self._api_key:
            raise LLMError("Anthropic API key not configured")
        client = anthropic.AsyncAnthropic(api_key=self._api_key)
        try:
            response = await client.messages.create(
                model=model or self.model,
                max_tokens=4096,
                system=system,
                messages=messages,  # type: ignore[arg-type]
                temperature=temperature,
            )
        except anthropic.AnthropicError as exc:
            logger.error("Anthropic request error: %s", exc)
            raise LLMError(f"Error calling Anthropic: {exc}") from exc

        # Handle different content block types from Anthropic API
        parts = [block.text for block in response.content if block.type == "text"]
        if not parts:
            raise LLMError("Anthropic returned no text content")
        content = "".join(parts)
        logger.debug("Anthropic response: %s", content)
        return content


@register_llm("tgi")
class TGILLMClient(BaseLLMClient):
    """Text-Generation-Inference endpoint over httpx."""

    default_model = "tgi"

    def __init__(
        self,
        model: str | None = None,
        endpoint: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(model)
        self._endpoint = endpoint or settings.TGI_ENDPOINT
        self._transport = transport

    async def complete(
        self,
        system: str,
        messages: List[Message],
        model: str | None = None,
        temperature: float = 0.2,
    ) -> str:
        turns = "\n".join(
            f"{'Assistant' if m['role'] == 'assistant' else 'User'}: {m['content']}"
            for m in messages
        )
        payload = {
            "inputs": f"{system}\n\n{turns}\nAssistant:",
            "parameters": {
                "max_new_tokens": 512,
                # TGI rejects temperature == 0; greedy decoding is the equivalent
                **({"temperature": temperature} if temperature > 0 else {"do_sample": False}),
                "stop": ["User:", "</s>"],
            },
        }
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                resp = await client.post(self._endpoint, json=payload)
                resp.raise_for_status()
                content = resp.json()["generated_text"]
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error("TGI request error: %s", exc)
            raise LLMError(f"Error calling TGI endpoint: {exc}") from exc

        logger.debug("TGI response: %s", content)
        return content


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------
class RouterLLMClient(LLMClient):
    """
    Routes each request to the provider it names, falling back to the default provider.

    Clients are created lazily and cached per provider; they hold configuration only.
    """

    def __init__(
        self,
        default_provider: str | None = None,
        clients: Mapping[str, BaseLLMClient] | None = None,
    ):
        self._default = default_provider
        self._clients: Dict[str, BaseLLMClient] = dict(clients or {})

    def _client_for(self, provider: str | None) -> BaseLLMClient:
        for name in (provider, self._default):
            if not name:
                continue
            name = name.lower()
            if name in self._clients:
                return self._clients[name]
            if name in _LLM_REGISTRY:
                client = self._clients[name] = load_llm_client(name)
                return client
            logger.warning("Unknown LLM provider '%s'", name)
        raise LLMError("no LLM provider configured")

    async def respond(self, llm_request: LLMRequest) -> LLMResponse:
        client = self._client_for(llm_request.provider)
        return await client.respond(llm_request)
