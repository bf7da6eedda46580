"""Query orchestration.

:class:`QueryPipeline` ties the pieces together for one question::

    cache lookup -> execute on miss -> parse -> cache on success
                                          \\-> one strict retry on failure

A response that fails to parse is retried exactly once with a narrower
instruction, and only when it did not come from the cache: retrying
cannot change a cached answer.  A retry that also fails is terminal.
When the retry succeeds it is the retry's response that gets cached.

Cache writes are best effort.  A failed write is logged and the answer
is still returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from .cache import CacheStore
from .context import CallContext
from .errors import CacheError, ProviderError, ValidationError
from .executor import ExecutionMode, QueryHooks, execute, query_blocking
from .models import ParsedResponse, QueryRequest, QueryResponse
from .prompts import PromptBuilder
from .providers import BaseProvider
from .validator import ResponseParser

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """A validated answer and the response it was parsed from."""

    parsed: ParsedResponse
    response: QueryResponse
    retried: bool = False


class QueryPipeline:
    """Answer questions about a tool through one provider.

    :param provider: Backend to query.
    :param model: Model id; also part of the cache fingerprint.
    :param cache: Response cache, or ``None`` to disable caching.
    :param context_window: Prompt budget forwarded to the provider.
    :param max_tokens: Output budget for every request.
    :param temperature: Sampling temperature for every request.
    """

    def __init__(
        self,
        provider: BaseProvider,
        model: str,
        cache: Optional[CacheStore] = None,
        context_window: int = 0,
        max_tokens: int = 2000,
        temperature: float = 0.1,
    ) -> None:
        self.provider = provider
        self.model = model
        self.cache = cache
        self.context_window = context_window
        self.max_tokens = max_tokens
        self.temperature = temperature

    def build_request(self, prompts: PromptBuilder) -> QueryRequest:
        return QueryRequest(
            model=self.model,
            system_prompt=prompts.system_prompt(),
            user_prompt=prompts.user_prompt(),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            context_window=self.context_window,
        )

    def _store(self, tool: str, question: str, response: QueryResponse) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(tool, question, self.model, response)
        except CacheError as exc:
            # Caching is best effort; the answer is still good.
            logger.warning("Failed to cache response: %s", exc.describe())

    def fetch(
        self,
        prompts: PromptBuilder,
        mode: ExecutionMode = ExecutionMode.BLOCKING,
        ctx: Optional[CallContext] = None,
        hooks: Optional[QueryHooks] = None,
        use_cache: bool = True,
    ) -> QueryResponse:
        """Return a raw response, from the cache when possible."""
        if use_cache and self.cache is not None:
            cached = self.cache.get(prompts.tool, prompts.question, self.model)
            if cached is not None:
                logger.info("Found in cache")
                return cached
        return execute(self.provider, self.build_request(prompts), mode, ctx, hooks)

    def retry(
        self, prompts: PromptBuilder, original: QueryRequest, ctx: Optional[CallContext] = None
    ) -> QueryResponse:
        """Issue the single strict retry as a blocking call.

        The retry honours ``ctx`` like the first attempt did.
        """
        request = replace(
            original,
            user_prompt=f"{original.user_prompt}\n\n{prompts.strict_retry_prompt()}",
        )
        try:
            return query_blocking(self.provider, request, ctx)
        except ProviderError as exc:
            raise ProviderError("LLM retry failed", provider=self.provider.name) from exc

    def run(
        self,
        prompts: PromptBuilder,
        mode: ExecutionMode = ExecutionMode.BLOCKING,
        ctx: Optional[CallContext] = None,
        hooks: Optional[QueryHooks] = None,
        use_cache: bool = True,
    ) -> QueryResult:
        """Answer the question held by ``prompts``.

        :raises ValidationError: when no valid command could be produced.
        :raises ProviderError: when the backend fails.
        """
        parser = ResponseParser(prompts.tool, prompts.explain_mode)
        response = self.fetch(prompts, mode, ctx, hooks, use_cache)
        parsed = parser.parse(response.content)

        if parsed.valid:
            if not response.cached:
                self._store(prompts.tool, prompts.question, response)
            return QueryResult(parsed, response)

        if response.cached:
            raise ValidationError("cached response invalid") from parsed.error

        logger.info("Validation failed: %s, retrying with strict prompt", parsed.error)
        retry_response = self.retry(prompts, self.build_request(prompts), ctx)
        retry_parsed = parser.parse(retry_response.content)
        if not retry_parsed.valid:
            # Keep NotFoundError when the model refused again.
            error_type = type(retry_parsed.error)
            raise error_type("unable to generate valid command") from retry_parsed.error

        self._store(prompts.tool, prompts.question, retry_response)
        return QueryResult(retry_parsed, retry_response, retried=True)
