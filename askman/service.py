"""End-to-end question answering shared by the CLI and the HTTP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .cache import CacheStore
from .config import Config, Profile, build_provider, cache_dir
from .context import CallContext
from .executor import ExecutionMode, QueryHooks
from .manpage import fetch
from .pipeline import QueryPipeline, QueryResult
from .pricing import PricingTable
from .prompts import PromptBuilder, estimate_tokens

logger = logging.getLogger(__name__)


@dataclass
class PreparedQuery:
    profile: Profile
    prompts: PromptBuilder
    prompt_tokens: int


def prepare(
    config: Config,
    tool: str,
    question: str,
    section: str = "",
    explain: bool = False,
    profile_name: Optional[str] = None,
    fetcher: Callable[[str, str], str] = fetch,
) -> PreparedQuery:
    """Resolve the profile and build the prompts for a question.

    :raises ConfigError: when no usable profile is configured.
    :raises ManPageError: when the manual page cannot be fetched.
    """
    profile = config.active_profile(profile_name)
    reference = fetcher(tool, section)
    logger.info("Man page size: %d bytes", len(reference))
    prompts = PromptBuilder(tool, reference, question, explain)
    return PreparedQuery(profile, prompts, estimate_tokens(prompts.user_prompt()))


def answer(
    config: Config,
    prepared: PreparedQuery,
    mode: ExecutionMode = ExecutionMode.BLOCKING,
    use_cache: bool = True,
    ctx: Optional[CallContext] = None,
    hooks: Optional[QueryHooks] = None,
    pricing: Optional[PricingTable] = None,
    cache: Optional[CacheStore] = None,
) -> QueryResult:
    """Run a prepared question through the query pipeline.

    An oversized prompt only produces a warning: the backend may still
    cope by truncating.
    """
    ctx = ctx or CallContext()
    provider, context_window = build_provider(prepared.profile, pricing, ctx)
    if prepared.prompt_tokens > context_window:
        logger.warning(
            "Prompt (~%d tokens) exceeds the %d token context window. "
            "Try a more specific section: askman ask <section> %s <question>",
            prepared.prompt_tokens,
            context_window,
            prepared.prompts.tool,
        )
    if cache is None:
        cache = CacheStore(cache_dir(), config.cache_days)
    pipeline = QueryPipeline(
        provider,
        prepared.profile.model,
        cache=cache,
        context_window=context_window,
    )
    return pipeline.run(prepared.prompts, mode, ctx, hooks, use_cache)
