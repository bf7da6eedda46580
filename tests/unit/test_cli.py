"""Unit tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner

from askman.cache import CacheStore
from askman.cli import cli
from askman.config import Config, Profile, load_config, save_config
from askman.models import QueryRequest
from askman.errors import ProviderError
from askman.pricing import default_table
from askman.providers import OpenAIProvider

from tests.unit.conftest import FakeProvider

MAN_PAGE = "LS(1)\n  -S  sort by file size, largest first"
REQUEST = QueryRequest(model="gpt-4o-mini", system_prompt="s", user_prompt="u")


@pytest.fixture(name="runner")
def runner_fixture():
    return CliRunner()


@pytest.fixture(name="configured")
def configured_fixture(isolated_env, mocker):
    """A saved profile, a stub man page and a scripted provider."""
    config = Config(default_profile="cloud")
    config.add_profile(Profile(name="cloud", provider="openai", model="gpt-4o-mini"))
    save_config(config)
    mocker.patch("askman.manpage.which", return_value="/usr/bin/man")
    mocker.patch("askman.manpage._run_man", return_value=MAN_PAGE)
    provider = FakeProvider(["ls -lhS"])
    get_provider = mocker.patch("askman.config.get_provider", return_value=provider)
    return provider, get_provider


def test_ask_prints_command(runner, configured):
    result = runner.invoke(cli, ["ask", "-q", "ls", "sort", "by", "size"])
    assert result.exit_code == 0, result.output
    assert result.output.strip() == "ls -lhS"


def test_ask_streaming_by_default(runner, configured):
    provider, _ = configured
    result = runner.invoke(cli, ["ask", "ls", "sort", "by", "size"])
    assert result.exit_code == 0, result.output
    assert "ls -lhS" in result.output
    assert provider.stream_calls == 1


def test_ask_second_run_hits_cache(runner, configured, isolated_env):
    provider, _ = configured
    runner.invoke(cli, ["ask", "-q", "ls", "sort", "by", "size"])
    result = runner.invoke(cli, ["ask", "-j", "ls", "sort", "by", "size"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["metadata"]["cached"] is True
    assert provider.query_calls == 1


def test_ask_no_cache(runner, configured):
    provider, _ = configured
    runner.invoke(cli, ["ask", "-q", "ls", "sort", "by", "size"])
    runner.invoke(cli, ["ask", "-q", "--no-cache", "ls", "sort", "by", "size"])
    assert provider.query_calls == 2


def test_ask_json(runner, configured):
    result = runner.invoke(cli, ["ask", "--json", "ls", "sort", "by", "size"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["command"] == "ls -lhS"
    assert payload["metadata"]["provider"] == "fake"
    assert payload["metadata"]["model"] == "gpt-4o-mini"
    assert payload["metadata"]["tokens_input"] == 10
    assert payload["metadata"]["cached"] is False
    assert payload["metadata"]["cost"] > 0


def test_ask_tokens(runner, configured):
    result = runner.invoke(cli, ["ask", "-q", "-t", "ls", "sort", "by", "size"])
    assert result.exit_code == 0, result.output
    assert "Token usage:" in result.output
    assert "Input:  10 tokens" in result.output


def test_ask_explain(runner, configured):
    provider, _ = configured
    provider.answers = ["ls -lhS\n\nSorts by size, largest first."]
    result = runner.invoke(cli, ["ask", "-q", "-e", "ls", "sort", "by", "size"])
    assert result.exit_code == 0, result.output
    assert "Sorts by size, largest first." in result.output


def test_ask_section_syntax(runner, configured, mocker):
    run_man = mocker.patch("askman.manpage._run_man", return_value=MAN_PAGE)
    result = runner.invoke(cli, ["ask", "-q", "-s", "1", "ls", "sort", "by", "size"])
    assert result.exit_code == 0, result.output
    assert run_man.call_args.args[0] == ["1", "ls"]


def test_ask_dry_run(runner, configured):
    _, get_provider = configured
    result = runner.invoke(cli, ["ask", "--dry-run", "ls", "sort", "by", "size"])
    assert result.exit_code == 0, result.output
    assert "=== System Prompt ===" in result.output
    get_provider.assert_not_called()


def test_ask_requires_question(runner, configured):
    result = runner.invoke(cli, ["ask", "ls"])
    assert result.exit_code == 2
    assert "no question specified" in result.output


def test_ask_invalid_answer(runner, configured):
    provider, _ = configured
    provider.answers = ["I cannot find this information in the man page"]
    result = runner.invoke(cli, ["ask", "-q", "ls", "fly", "to", "the", "moon"])
    assert result.exit_code == 1
    assert "unable to generate valid command" in result.output
    assert provider.query_calls == 2


def test_ask_missing_man_page(runner, configured, mocker):
    mocker.patch("askman.manpage._run_man", return_value=None)
    result = runner.invoke(cli, ["ask", "-q", "nosuchtool", "do", "things"])
    assert result.exit_code == 1
    assert "man page for 'nosuchtool' not found" in result.output


def test_ask_without_profile(runner, isolated_env):
    result = runner.invoke(cli, ["ask", "ls", "sort", "by", "size"])
    assert result.exit_code == 1
    assert "no profile specified" in result.output


def test_ask_warns_on_dangerous_command(runner, configured, mocker):
    provider, _ = configured
    provider.answers = ["rm -rf <dir>"]
    result = runner.invoke(cli, ["ask", "-q", "rm", "delete", "a", "directory"])
    assert result.exit_code == 0, result.output
    assert "rm -rf <dir>" in result.output
    assert "destructive" in result.output


def test_configure_and_list_profiles(runner, isolated_env):
    result = runner.invoke(
        cli, ["configure", "--name", "local", "--provider", "ollama", "--model", "llama3.2:latest"]
    )
    assert result.exit_code == 0, result.output
    config = load_config()
    assert config.default_profile == "local"
    assert config.profiles["local"].model == "llama3.2:latest"

    result = runner.invoke(cli, ["list-profiles"])
    assert "* local" in result.output
    assert "llama3.2:latest" in result.output


def test_configure_rejects_unknown_provider(runner, isolated_env):
    result = runner.invoke(cli, ["configure", "--name", "x", "--provider", "mock", "--model", "m"])
    assert result.exit_code == 2


def test_set_profile(runner, configured):
    config = load_config()
    config.add_profile(Profile(name="local", provider="ollama", model="llama3"))
    save_config(config)

    result = runner.invoke(cli, ["set-profile", "local"])
    assert result.exit_code == 0, result.output
    assert load_config().default_profile == "local"

    result = runner.invoke(cli, ["set-profile", "missing"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_test_config_passes(runner, configured, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    config = load_config()
    config.add_profile(Profile(name="local", provider="ollama", model="llama3.2:latest"))
    save_config(config)

    result = runner.invoke(cli, ["test-config"])
    assert result.exit_code == 0, result.output
    assert "Testing profiles..." in result.output
    assert "Testing cloud (openai gpt-4o-mini)... \u2713" in result.output
    assert "Testing local (ollama llama3.2:latest)... \u2713" in result.output
    assert "All profiles configured correctly" in result.output


def test_test_config_reports_problems(runner, configured, mocker):
    config = load_config()
    config.add_profile(Profile(name="local", provider="ollama", model="llama3"))
    save_config(config)
    offline = FakeProvider(["unused"])
    mocker.patch.object(
        offline, "get_available_models", side_effect=ProviderError("cannot reach Ollama", provider="ollama")
    )
    mocker.patch("askman.config.get_provider", return_value=offline)

    result = runner.invoke(cli, ["test-config"])
    assert result.exit_code == 1
    assert "Missing OPENAI_API_KEY" in result.output
    assert "cannot reach Ollama" in result.output
    assert "some profiles have configuration issues" in result.output


def test_test_config_without_profiles(runner, isolated_env):
    result = runner.invoke(cli, ["test-config"])
    assert result.exit_code == 1
    assert "no profiles configured" in result.output


def test_list_models(runner, configured, mocker):
    mocker.patch(
        "askman.config.get_provider",
        return_value=OpenAIProvider(api_key=None, client=mocker.Mock(), pricing=default_table()),
    )
    result = runner.invoke(cli, ["list-models"])
    assert result.exit_code == 0, result.output
    assert "gpt-4o-mini" in result.output
    assert "per 1M tokens" in result.output


def test_cache_commands(runner, isolated_env):
    store = CacheStore(isolated_env / "cache")
    store.set("ls", "sort by size", "gpt-4o-mini", FakeProvider(["ls -S"]).query(REQUEST))

    result = runner.invoke(cli, ["cache-stats"])
    assert result.exit_code == 0, result.output
    assert "Total entries:    1" in result.output

    result = runner.invoke(cli, ["clean-cache"])
    assert "Removed 0 expired entries" in result.output

    result = runner.invoke(cli, ["clear-cache"])
    assert "Cleared 1 cached entries" in result.output


def test_serve_runs_uvicorn(runner, isolated_env, mocker):
    run = mocker.patch("uvicorn.run")
    result = runner.invoke(cli, ["serve", "--port", "9000"])
    assert result.exit_code == 0, result.output
    assert run.call_args.kwargs["port"] == 9000

