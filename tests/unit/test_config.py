"""Unit tests for configuration loading and provider construction."""

import pytest
import yaml

from askman.config import (
    Config,
    Profile,
    build_provider,
    cache_dir,
    check_profile,
    config_file,
    load_config,
    save_config,
)
from askman.errors import AuthenticationError, ConfigError, ProviderError
from askman.providers import OllamaProvider, OpenAIProvider


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "absent.yaml")
    assert config.default_profile == ""
    assert config.cache_days == 30
    assert config.profiles == {}


def test_save_and_load(tmp_path):
    path = tmp_path / "nested" / "config.yaml"
    config = Config(default_profile="local", cache_days=7)
    config.add_profile(Profile(name="local", provider="ollama", model="llama3.2:latest", context_window=4096))
    config.add_profile(Profile(name="cloud", provider="openai", model="gpt-4o-mini"))
    save_config(config, path)

    loaded = load_config(path)
    assert loaded.default_profile == "local"
    assert loaded.cache_days == 7
    assert loaded.profiles["local"].context_window == 4096
    assert loaded.profiles["cloud"].model == "gpt-4o-mini"
    assert "context_window" not in yaml.safe_load(path.read_text())["profiles"]["cloud"]


@pytest.mark.parametrize(
    "content",
    [
        "- just\n- a list\n",
        "profiles: [1, 2]\n",
        "profiles:\n  broken:\n    provider: openai\n",
        "cache_days: soon\n",
        "profiles: {a: 1",
    ],
)
def test_malformed_config(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(path)


def test_active_profile_priority(monkeypatch):
    config = Config(default_profile="a")
    for name in ("a", "b", "c"):
        config.add_profile(Profile(name=name, provider="ollama", model=name))
    monkeypatch.delenv("ASKMAN_PROFILE", raising=False)
    assert config.active_profile().name == "a"
    monkeypatch.setenv("ASKMAN_PROFILE", "b")
    assert config.active_profile().name == "b"
    assert config.active_profile("c").name == "c"


def test_active_profile_errors(monkeypatch):
    monkeypatch.delenv("ASKMAN_PROFILE", raising=False)
    with pytest.raises(ConfigError):
        Config().active_profile()
    with pytest.raises(ConfigError):
        Config().active_profile("missing")


def test_paths_follow_environment(isolated_env):
    assert config_file() == isolated_env / "config.yaml"
    assert cache_dir() == isolated_env / "cache"


def test_build_openai_requires_key(isolated_env):
    with pytest.raises(AuthenticationError):
        build_provider(Profile(name="cloud", provider="openai", model="gpt-4o-mini"))


def test_build_openai(isolated_env, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    provider, window = build_provider(Profile(name="cloud", provider="openai", model="gpt-4o-mini"))
    assert isinstance(provider, OpenAIProvider)
    assert window == 8192


def test_build_unsupported_provider(isolated_env):
    with pytest.raises(ConfigError):
        build_provider(Profile(name="x", provider="lmstudio", model="m"))


def test_build_ollama_explicit_window(isolated_env, mocker):
    detect = mocker.patch.object(OllamaProvider, "get_model_context_window")
    provider, window = build_provider(
        Profile(name="local", provider="ollama", model="llama3", context_window=2048)
    )
    assert isinstance(provider, OllamaProvider)
    assert window == 2048
    detect.assert_not_called()


def test_build_ollama_detects_and_caps_window(isolated_env, monkeypatch, mocker):
    monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434")
    mocker.patch.object(OllamaProvider, "get_model_context_window", return_value=131072)
    provider, window = build_provider(Profile(name="local", provider="ollama", model="llama3"))
    assert provider.host == "http://gpu-box:11434"
    assert window == 8192


def test_build_ollama_small_detected_window(isolated_env, mocker):
    mocker.patch.object(OllamaProvider, "get_model_context_window", return_value=2048)
    _, window = build_provider(Profile(name="local", provider="ollama", model="llama3"))
    assert window == 2048


def test_build_ollama_detection_failure_falls_back(isolated_env, mocker):
    mocker.patch.object(
        OllamaProvider,
        "get_model_context_window",
        side_effect=ProviderError("cannot reach Ollama", provider="ollama"),
    )
    _, window = build_provider(Profile(name="local", provider="ollama", model="llama3"))
    assert window == 8192


def test_check_profile(isolated_env, monkeypatch, mocker):
    cloud = Profile(name="cloud", provider="openai", model="gpt-4o-mini")
    assert check_profile(cloud) == "Missing OPENAI_API_KEY"
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert check_profile(cloud) is None

    assert "Unsupported provider" in check_profile(Profile(name="x", provider="lmstudio", model="m"))

    models = mocker.patch.object(OllamaProvider, "get_available_models", return_value=[])
    assert check_profile(Profile(name="local", provider="ollama", model="llama3")) is None
    models.side_effect = ProviderError("cannot reach Ollama", provider="ollama")
    assert "cannot reach Ollama" in check_profile(Profile(name="local", provider="ollama", model="llama3"))
