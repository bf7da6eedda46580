"""HTTP API exposing the question pipeline.

``askman serve`` runs this app with uvicorn.  One endpoint,
``POST /ask``, takes a tool and a question and returns the validated
command without executing it.  Requests are handled concurrently; the
cache store instance is shared so same-fingerprint writes are
serialized by its per-key locks.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from .cache import CacheStore
from .config import Config, cache_dir, load_config
from .errors import (
    AskmanError,
    AuthenticationError,
    ConfigError,
    ManPageError,
    NotFoundError,
    ProviderError,
    QueryTimeoutError,
    ValidationError,
)
from .manpage import fetch
from .pricing import default_table
from .service import answer, prepare

logger = logging.getLogger(__name__)


class AskRequest(BaseModel):
    tool: str
    question: str
    section: str = ""
    explain: bool = False
    profile: Optional[str] = None
    no_cache: bool = False


class AskResponse(BaseModel):
    command: str
    explanation: str = ""
    provider: str
    model: str
    tokens_input: int
    tokens_output: int
    cached: bool
    cost: Optional[float] = None


# Checked in order; subclasses come before their bases.
ERROR_STATUS = [
    (NotFoundError, 404),
    (ManPageError, 404),
    (ValidationError, 422),
    (ConfigError, 400),
    (QueryTimeoutError, 504),
    (AuthenticationError, 401),
    (ProviderError, 502),
]


def _status_for(exc: AskmanError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


def create_app(
    config_loader: Callable[[], Config] = load_config,
    fetcher: Callable[[str, str], str] = fetch,
    cache: Optional[CacheStore] = None,
) -> FastAPI:
    """Build the FastAPI application.

    The cache store is created here, once, and shared by every request.

    :raises ConfigError: if ``cache`` is not given and the configuration
      cannot be loaded.
    """
    if cache is None:
        cache = CacheStore(cache_dir(), config_loader().cache_days)
    app = FastAPI(title="askman", version="1.0")
    pricing = default_table()

    @app.post("/ask", response_model=AskResponse)
    def ask(request: AskRequest) -> AskResponse:
        if not request.tool.strip() or not request.question.strip():
            raise HTTPException(status_code=400, detail="'tool' and 'question' must be non-empty")
        try:
            config = config_loader()
            prepared = prepare(
                config,
                request.tool,
                request.question,
                section=request.section,
                explain=request.explain,
                profile_name=request.profile,
                fetcher=fetcher,
            )
            result = answer(
                config,
                prepared,
                use_cache=not request.no_cache,
                pricing=pricing,
                cache=cache,
            )
        except AskmanError as exc:
            logger.warning("Request for %s failed: %s", request.tool, exc.describe())
            raise HTTPException(status_code=_status_for(exc), detail=exc.describe()) from exc

        resp = result.response
        return AskResponse(
            command=result.parsed.command,
            explanation=result.parsed.explanation,
            provider=resp.provider,
            model=resp.model,
            tokens_input=resp.tokens_input,
            tokens_output=resp.tokens_output,
            cached=resp.cached,
            cost=pricing.cost(resp.model, resp.tokens_input, resp.tokens_output),
        )

    return app
