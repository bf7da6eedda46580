"""Configuration and profile management.

Settings live in a YAML file, ``~/.askman/config.yaml`` by default or
the path named by ``ASKMAN_CONFIG``::

    default_profile: openai-gpt4o-mini
    cache_days: 30
    profiles:
      openai-gpt4o-mini:
        provider: openai
        model: gpt-4o-mini
      ollama-llama3:
        provider: ollama
        model: llama3.2:latest
        context_window: 8192

A profile names a provider and a model.  Secrets never live in the
file: the OpenAI key comes from ``OPENAI_API_KEY`` and the Ollama host
from ``OLLAMA_HOST``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .context import CallContext
from .errors import AskmanError, ConfigError, ProviderError, QueryTimeoutError
from .pricing import PricingTable
from .providers import DEFAULT_CONTEXT_WINDOW, DEFAULT_OLLAMA_HOST, BaseProvider, OllamaProvider, get_provider

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DAYS = 30
# Models may advertise windows larger than a local daemon can hold.
MAX_PRACTICAL_CONTEXT = 8192
SUPPORTED_PROVIDERS = ("openai", "ollama")


def _config_dir() -> Path:
    """Return the path to the user's configuration directory (~/.askman)."""
    return Path.home() / ".askman"


def config_file() -> Path:
    """Return the path to the configuration file."""
    override = os.environ.get("ASKMAN_CONFIG")
    if override:
        return Path(override).expanduser()
    return _config_dir() / "config.yaml"


def cache_dir() -> Path:
    """Return the cache directory, honouring ``ASKMAN_CACHE_DIR``."""
    override = os.environ.get("ASKMAN_CACHE_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".cache" / "askman"


def api_key(provider: str) -> Optional[str]:
    """Return the API key for a cloud provider from the environment."""
    if provider == "openai":
        return os.environ.get("OPENAI_API_KEY") or None
    return None


def ollama_host() -> str:
    return os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST


@dataclass
class Profile:
    name: str
    provider: str
    model: str
    context_window: int = 0
    options: Dict[str, Any] = field(default_factory=dict)

    def context_window_or_default(self) -> int:
        return self.context_window if self.context_window > 0 else DEFAULT_CONTEXT_WINDOW

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"provider": self.provider, "model": self.model}
        if self.context_window:
            data["context_window"] = self.context_window
        if self.options:
            data["options"] = dict(self.options)
        return data


@dataclass
class Config:
    default_profile: str = ""
    cache_days: int = DEFAULT_CACHE_DAYS
    profiles: Dict[str, Profile] = field(default_factory=dict)

    def add_profile(self, profile: Profile) -> None:
        self.profiles[profile.name] = profile

    def active_profile(self, name: Optional[str] = None) -> Profile:
        """Return the profile to use.

        Priority: explicit ``name`` > ``ASKMAN_PROFILE`` > ``default_profile``.

        :raises ConfigError: if no profile is selected or it is unknown.
        """
        selected = name or os.environ.get("ASKMAN_PROFILE") or self.default_profile
        if not selected:
            raise ConfigError("no profile specified and no default profile set")
        try:
            return self.profiles[selected]
        except KeyError:
            raise ConfigError(f"profile {selected!r} not found") from None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default_profile": self.default_profile,
            "cache_days": self.cache_days,
            "profiles": {name: p.to_dict() for name, p in self.profiles.items()},
        }


def _profile_from(name: str, data: Any) -> Profile:
    if not isinstance(data, dict):
        raise ConfigError(f"profile {name!r} must be a mapping")
    try:
        return Profile(
            name=name,
            provider=str(data["provider"]),
            model=str(data["model"]),
            context_window=int(data.get("context_window") or 0),
            options=dict(data.get("options") or {}),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"profile {name!r} is invalid: {exc}") from exc


def load_config(path: Optional[Path] = None) -> Config:
    """Load the YAML configuration, returning defaults if the file is missing.

    :raises ConfigError: if the file exists but cannot be parsed.
    """
    cfg_path = path or config_file()
    if not cfg_path.exists():
        return Config()
    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read config file {cfg_path}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file {cfg_path} must contain a mapping")
    profiles = data.get("profiles") or {}
    if not isinstance(profiles, dict):
        raise ConfigError("'profiles' must be a mapping")
    try:
        cache_days = int(data.get("cache_days", DEFAULT_CACHE_DAYS))
    except (TypeError, ValueError) as exc:
        raise ConfigError("'cache_days' must be an integer") from exc
    return Config(
        default_profile=str(data.get("default_profile") or ""),
        cache_days=cache_days,
        profiles={name: _profile_from(name, p) for name, p in profiles.items()},
    )


def save_config(config: Config, path: Optional[Path] = None) -> None:
    """Persist configuration to disk."""
    cfg_path = path or config_file()
    try:
        cfg_path.parent.mkdir(parents=True, exist_ok=True)
        with cfg_path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(config.to_dict(), f, sort_keys=False)
    except OSError as exc:
        raise ConfigError(f"failed to write config file {cfg_path}") from exc


def build_provider(
    profile: Profile,
    pricing: Optional[PricingTable] = None,
    ctx: Optional[CallContext] = None,
) -> Tuple[BaseProvider, int]:
    """Instantiate the provider for ``profile`` and resolve its context window.

    For Ollama profiles without an explicit window the daemon is asked
    for the model's advertised context length, capped at
    :data:`MAX_PRACTICAL_CONTEXT`; failure falls back to the default.

    :raises ConfigError: for an unsupported provider name.
    :raises ProviderError: if the provider cannot be created.
    """
    if profile.provider not in SUPPORTED_PROVIDERS:
        raise ConfigError(f"unsupported provider: {profile.provider}")
    host = ollama_host() if profile.provider == "ollama" else profile.options.get("base_url")
    provider = get_provider(profile.provider, api_key=api_key(profile.provider), host=host, pricing=pricing)

    if profile.context_window > 0 or not isinstance(provider, OllamaProvider):
        return provider, profile.context_window_or_default()
    try:
        detected = provider.get_model_context_window(profile.model, ctx)
    except (ProviderError, QueryTimeoutError) as exc:
        logger.info("Context window detection failed: %s", exc)
        return provider, profile.context_window_or_default()
    window = min(detected, MAX_PRACTICAL_CONTEXT)
    logger.info("Auto-detected context window: %d tokens (using %d)", detected, window)
    return provider, window


def check_profile(profile: Profile, ctx: Optional[CallContext] = None) -> Optional[str]:
    """Return what is wrong with ``profile``, or ``None`` if it looks usable.

    OpenAI profiles need ``OPENAI_API_KEY``; Ollama profiles need a
    reachable daemon.  No model is queried.
    """
    if profile.provider not in SUPPORTED_PROVIDERS:
        return f"Unsupported provider: {profile.provider}"
    if profile.provider == "openai":
        if not api_key("openai"):
            return "Missing OPENAI_API_KEY"
        return None
    try:
        get_provider("ollama", host=ollama_host()).get_available_models(ctx or CallContext(timeout=5))
    except AskmanError as exc:
        return exc.describe()
    return None
