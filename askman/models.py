"""Data types shared by the providers, the cache and the pipeline.

All request and response shapes are plain dataclasses.  Requests are
frozen; a retry builds a new request instead of mutating the original.
:class:`QueryResponse` is mutable only so the cache can flip its
``cached`` flag on a hit.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Pricing:
    """Cost of a model in USD per million tokens."""

    input_per_million: float
    output_per_million: float


@dataclass(frozen=True)
class Model:
    """A selectable backend model."""

    id: str
    display_name: str
    provider: str
    pricing: Optional[Pricing] = None


@dataclass(frozen=True)
class QueryRequest:
    """A single completion request.

    ``context_window`` is the prompt budget in tokens; ``0`` lets the
    provider apply its own default.
    """

    model: str
    system_prompt: str
    user_prompt: str
    max_tokens: int = 2000
    temperature: float = 0.1
    context_window: int = 0
    stop_sequences: Tuple[str, ...] = ()


@dataclass
class QueryResponse:
    """A completed answer from a provider or from the cache.

    ``usage_reported`` is ``False`` when the backend sent no usage block
    and the token counts are therefore zero by default rather than
    measured.
    """

    content: str
    tokens_input: int = 0
    tokens_output: int = 0
    model: str = ""
    provider: str = ""
    cached: bool = False
    usage_reported: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryResponse":
        """Build a response from its serialized form.

        :raises TypeError: if ``data`` is not a mapping.
        Keys may be snake_case or the capitalized spelling older cache
        files use (``Content``, ``TokensInput``, ...).

        :raises KeyError: if ``content`` is missing.
        :raises ValueError: if token counts are not integers.
        """
        if not isinstance(data, dict):
            raise TypeError("response must be an object")
        def pick(name: str, legacy: str, default: Any = None) -> Any:
            if name in data:
                return data[name]
            return data.get(legacy, default)

        if "content" not in data and "Content" not in data:
            raise KeyError("content")
        content = pick("content", "Content")
        if not isinstance(content, str):
            raise ValueError("response content must be a string")
        return cls(
            content=content,
            tokens_input=int(pick("tokens_input", "TokensInput", 0) or 0),
            tokens_output=int(pick("tokens_output", "TokensOutput", 0) or 0),
            model=str(pick("model", "Model", "") or ""),
            provider=str(pick("provider", "Provider", "") or ""),
            cached=bool(pick("cached", "Cached", False)),
            usage_reported=bool(data.get("usage_reported", True)),
        )


@dataclass(frozen=True)
class StreamChunk:
    """One increment of a streaming response.

    Token counts are only meaningful on the terminal chunk (``done``).
    """

    content: str = ""
    done: bool = False
    tokens_input: int = 0
    tokens_output: int = 0
    usage_reported: bool = True


@dataclass(frozen=True)
class ParsedResponse:
    """Result of parsing raw model output."""

    command: str = ""
    explanation: str = ""
    valid: bool = False
    error: Optional[Exception] = None

    @classmethod
    def failure(cls, error: Exception) -> "ParsedResponse":
        return cls(valid=False, error=error)


@dataclass
class CacheStats:
    """Aggregate view over the cache directory."""

    total_entries: int = 0
    total_size_bytes: int = 0
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None
    total_hits: int = 0
