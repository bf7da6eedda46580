"""Model provider layer for askman.

This module contains the abstraction over the LLM backends that turn a
manual page and a question into a shell command.  Every provider
implements the :class:`BaseProvider` interface: a blocking ``query``,
a lazily evaluated ``stream_query``, model enumeration, a stable
``name`` and a streaming capability flag.

Supported providers:

* ``OpenAIProvider`` – talks to the OpenAI chat completions API (or any
  compatible endpoint) through the official ``openai`` SDK.  Model
  enumeration returns a static list priced from the
  :class:`~askman.pricing.PricingTable` it is given.
* ``OllamaProvider`` – talks to a local Ollama daemon over its HTTP
  API using ``requests``.  Streaming responses arrive as newline
  delimited JSON objects.

Providers never retry.  Network, authentication and malformed payload
errors are wrapped in :class:`~askman.errors.ProviderError` (or its
subclass :class:`~askman.errors.AuthenticationError`) naming the
backend, and surfaced to the caller.  Retry policy lives in
:mod:`askman.pipeline` and only covers format failures.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import openai
import requests

from .context import CallContext
from .errors import AuthenticationError, ProviderError, QueryTimeoutError
from .models import Model, QueryRequest, QueryResponse, StreamChunk
from .pricing import PricingTable

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_CONTEXT_WINDOW = 8192
# Used when the caller supplies no deadline of its own.
DEFAULT_HTTP_TIMEOUT = 300.0

OPENAI_MODELS = [
    ("gpt-4o", "GPT-4o"),
    ("gpt-4o-mini", "GPT-4o Mini"),
    ("gpt-4-turbo", "GPT-4 Turbo"),
]


def _timeout(ctx: Optional[CallContext]) -> float:
    if ctx is None:
        return DEFAULT_HTTP_TIMEOUT
    remaining = ctx.remaining()
    return DEFAULT_HTTP_TIMEOUT if remaining is None else remaining


class BaseProvider:
    """Abstract base class for all providers."""

    name = "base"

    def query(self, request: QueryRequest, ctx: Optional[CallContext] = None) -> QueryResponse:
        """Issue one blocking round trip and return the complete answer.

        Token counts must come from the backend's own usage accounting.
        Subclasses must implement this method.

        :raises ProviderError: on any backend failure.
        """
        raise NotImplementedError

    def stream_query(
        self, request: QueryRequest, ctx: Optional[CallContext] = None
    ) -> Iterator[StreamChunk]:
        """Issue one streaming round trip.

        Yields data chunks in generation order followed by exactly one
        chunk with ``done`` set that carries the token counts.  Backend
        failures are raised from the iterator instead of producing the
        terminal chunk.
        """
        raise NotImplementedError

    def get_available_models(self, ctx: Optional[CallContext] = None) -> List[Model]:
        """Return the models selectable for this provider.

        The default implementation returns an empty list.  Errors are
        propagated as :class:`ProviderError`.
        """
        return []

    def supports_streaming(self) -> bool:
        return False

    def _error(self, message: str) -> ProviderError:
        return ProviderError(message, provider=self.name)


class OpenAIProvider(BaseProvider):
    """Provider backed by the OpenAI chat completions API.

    :param api_key: API key; a missing key fails immediately with
      :class:`AuthenticationError` rather than on the first call.
    :param base_url: Optional endpoint for OpenAI compatible servers.
    :param pricing: Pricing snapshot used to annotate the static model
      list returned by :meth:`get_available_models`.
    :param client: Pre-built SDK client, mainly for tests.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        pricing: Optional[PricingTable] = None,
        client: Any = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise AuthenticationError(
                    "OpenAI API key is required. Set the OPENAI_API_KEY environment variable",
                    provider=self.name,
                )
            client = openai.OpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self.client = client
        self.pricing = pricing

    def _params(self, request: QueryRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.stop_sequences:
            params["stop"] = list(request.stop_sequences)
        return params

    def _wrap(self, exc: Exception) -> Exception:
        if isinstance(exc, openai.APITimeoutError):
            return QueryTimeoutError(f"{self.name}: OpenAI request timed out: {exc}")
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return AuthenticationError(f"authentication failed: {exc}", provider=self.name)
        return self._error(f"OpenAI API error: {exc}")

    def query(self, request: QueryRequest, ctx: Optional[CallContext] = None) -> QueryResponse:
        try:
            resp = self.client.chat.completions.create(
                **self._params(request), timeout=_timeout(ctx)
            )
        except openai.OpenAIError as exc:
            raise self._wrap(exc) from exc

        if not resp.choices:
            raise self._error("no response from OpenAI")
        usage = resp.usage
        return QueryResponse(
            content=resp.choices[0].message.content or "",
            tokens_input=usage.prompt_tokens if usage else 0,
            tokens_output=usage.completion_tokens if usage else 0,
            model=request.model,
            provider=self.name,
            usage_reported=usage is not None,
        )

    def stream_query(
        self, request: QueryRequest, ctx: Optional[CallContext] = None
    ) -> Iterator[StreamChunk]:
        usage = None
        try:
            stream = self.client.chat.completions.create(
                **self._params(request),
                stream=True,
                stream_options={"include_usage": True},
                timeout=_timeout(ctx),
            )
            for chunk in stream:
                if chunk.choices:
                    content = chunk.choices[0].delta.content
                    if content:
                        yield StreamChunk(content=content)
                # Usage arrives on a final chunk with no choices.
                if getattr(chunk, "usage", None):
                    usage = chunk.usage
        except openai.OpenAIError as exc:
            raise self._wrap(exc) from exc

        yield StreamChunk(
            done=True,
            tokens_input=usage.prompt_tokens if usage else 0,
            tokens_output=usage.completion_tokens if usage else 0,
            usage_reported=usage is not None,
        )

    def get_available_models(self, ctx: Optional[CallContext] = None) -> List[Model]:
        """Return the hand-maintained list of supported chat models."""
        models = []
        for model_id, display in OPENAI_MODELS:
            entry = self.pricing.get(model_id) if self.pricing else None
            models.append(
                Model(
                    id=model_id,
                    display_name=display,
                    provider=self.name,
                    pricing=entry.pricing if entry else None,
                )
            )
        return models

    def supports_streaming(self) -> bool:
        return True


class OllamaProvider(BaseProvider):
    """Provider that talks to a local Ollama daemon.

    Ollama (https://ollama.com/) serves local models behind a small
    HTTP API.  ``/api/chat`` answers either with one JSON object or,
    when streaming, with one JSON object per line; the final object has
    ``done`` set and carries ``prompt_eval_count`` and ``eval_count``.
    If the daemon is not running, calls fail with
    :class:`ProviderError`.
    """

    name = "ollama"

    def __init__(self, host: str = DEFAULT_OLLAMA_HOST, session: Optional[requests.Session] = None) -> None:
        self.host = host.rstrip("/")
        self.session = session or requests.Session()

    def _payload(self, request: QueryRequest, stream: bool) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": request.temperature,
            "num_predict": request.max_tokens,
            "num_ctx": request.context_window or DEFAULT_CONTEXT_WINDOW,
        }
        if request.stop_sequences:
            options["stop"] = list(request.stop_sequences)
        return {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "stream": stream,
            "options": options,
        }

    def _request(self, method: str, path: str, ctx: Optional[CallContext], **kwargs: Any) -> requests.Response:
        url = f"{self.host}{path}"
        logger.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, timeout=_timeout(ctx), **kwargs)
        except requests.Timeout as exc:
            raise QueryTimeoutError(f"{self.name}: Ollama request to {url} timed out") from exc
        except requests.ConnectionError as exc:
            raise self._error(
                f"cannot reach Ollama at {self.host}. Make sure it is running: ollama serve"
            ) from exc
        except requests.RequestException as exc:
            raise self._error(f"Ollama API error: {exc}") from exc
        if resp.status_code >= 400:
            detail = resp.text.strip()
            try:
                detail = resp.json().get("error", detail)
            except ValueError:
                pass
            resp.close()
            raise self._error(f"Ollama API error ({resp.status_code}): {detail}")
        return resp

    @staticmethod
    def _usage(data: Dict[str, Any]) -> Dict[str, Any]:
        reported = "prompt_eval_count" in data or "eval_count" in data
        return {
            "tokens_input": int(data.get("prompt_eval_count") or 0),
            "tokens_output": int(data.get("eval_count") or 0),
            "usage_reported": reported,
        }

    def query(self, request: QueryRequest, ctx: Optional[CallContext] = None) -> QueryResponse:
        resp = self._request("POST", "/api/chat", ctx, json=self._payload(request, stream=False))
        try:
            data = resp.json()
            if "error" in data:
                raise self._error(f"Ollama API error: {data['error']}")
            content = data["message"]["content"]
        except (ValueError, KeyError, TypeError) as exc:
            raise self._error("malformed response from Ollama") from exc
        return QueryResponse(
            content=content,
            model=request.model,
            provider=self.name,
            **self._usage(data),
        )

    def stream_query(
        self, request: QueryRequest, ctx: Optional[CallContext] = None
    ) -> Iterator[StreamChunk]:
        resp = self._request(
            "POST", "/api/chat", ctx, json=self._payload(request, stream=True), stream=True
        )
        with resp:
            try:
                for line in resp.iter_lines():
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except ValueError as exc:
                        raise self._error("malformed stream line from Ollama") from exc
                    if "error" in data:
                        raise self._error(f"stream error: {data['error']}")
                    if data.get("done"):
                        yield StreamChunk(done=True, **self._usage(data))
                        return
                    content = (data.get("message") or {}).get("content", "")
                    if content:
                        yield StreamChunk(content=content)
            except requests.RequestException as exc:
                raise self._error(f"stream error: {exc}") from exc

    def get_available_models(self, ctx: Optional[CallContext] = None) -> List[Model]:
        """Return the models installed in the local daemon."""
        resp = self._request("GET", "/api/tags", ctx)
        try:
            entries = resp.json()["models"]
            names = [item["name"] for item in entries]
        except (ValueError, KeyError, TypeError) as exc:
            raise self._error("failed to list Ollama models: malformed response") from exc
        return [Model(id=n, display_name=n, provider=self.name) for n in names]

    def get_model_context_window(self, model: str, ctx: Optional[CallContext] = None) -> int:
        """Return the context length the model advertises.

        :raises ProviderError: when the daemon does not report one.
        """
        resp = self._request("POST", "/api/show", ctx, json={"model": model})
        try:
            info = resp.json().get("model_info") or {}
        except (ValueError, AttributeError) as exc:
            raise self._error("failed to get model info: malformed response") from exc
        for key, value in info.items():
            if key == "context_length" or key.endswith(".context_length"):
                if isinstance(value, (int, float)):
                    return int(value)
        raise self._error(f"context_length not found in model info for {model}")

    def supports_streaming(self) -> bool:
        return True


def get_provider(
    provider_name: str,
    api_key: Optional[str] = None,
    host: Optional[str] = None,
    pricing: Optional[PricingTable] = None,
) -> BaseProvider:
    """Factory function to instantiate the appropriate provider.

    :param provider_name: Name of the provider ('openai', 'ollama').
    :param api_key: API key for cloud providers.
    :param host: Base URL; the OpenAI endpoint or the Ollama daemon.
    :param pricing: Pricing snapshot for the static OpenAI model list.
    :returns: A provider instance.
    :raises ValueError: If the provider name is unknown.
    """
    name = provider_name.lower().strip()
    if name == "openai":
        return OpenAIProvider(api_key, base_url=host, pricing=pricing)
    if name == "ollama":
        return OllamaProvider(host or DEFAULT_OLLAMA_HOST)
    raise ValueError(f"Unknown provider: {provider_name}")
