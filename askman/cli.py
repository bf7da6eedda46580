"""Command line interface for askman.

This module defines the ``askman`` command using the ``click`` library.
It exposes several subcommands:

``askman ask <tool> <question>``
    Answer a question about a tool from its manual page.  ``--explain``
    adds an explanation, ``--json`` prints machine readable output and
    ``--tokens`` shows token usage and estimated cost.

``askman configure``
    Add or update a profile (provider + model) in
    ``~/.askman/config.yaml``.

``askman list-profiles`` / ``askman set-profile <name>``
    Show the configured profiles or change the default one.

``askman test-config``
    Check that every profile has what it needs (API key, reachable
    Ollama daemon).

``askman list-models``
    List available models for the active profile's provider.

``askman cache-stats`` / ``askman clear-cache`` / ``askman clean-cache``
    Inspect the response cache, wipe it, or drop expired entries.

``askman serve``
    Launch a FastAPI server exposing a JSON API for external
    integrations.  The server listens on port 5005 by default.
"""

from __future__ import annotations

import json
from typing import Optional, Tuple

import click

from .cache import CacheStore
from .config import Profile, build_provider, cache_dir, check_profile, load_config, save_config
from .context import CallContext
from .errors import AskmanError, QueryCancelledError
from .executor import ExecutionMode, QueryHooks
from .log import configure_logging, stderr_console
from .manpage import parse_command
from .pricing import default_table, format_usage
from .service import answer, prepare
from .validator import is_dangerous


def _fail(exc: AskmanError) -> click.ClickException:
    return click.ClickException(exc.describe())


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
def cli() -> None:
    """askman – answer questions about command-line tools from their man pages."""
    pass


@cli.command(name="ask", context_settings={"ignore_unknown_options": True})
@click.argument("words", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("-p", "--profile", "profile_name", default=None, help="LLM profile to use.")
@click.option("--no-cache", is_flag=True, help="Bypass the cache for this query.")
@click.option("-e", "--explain", is_flag=True, help="Include an explanation.")
@click.option("-j", "--json", "as_json", is_flag=True, help="JSON output with metadata.")
@click.option("-t", "--tokens", is_flag=True, help="Show token usage and costs.")
@click.option("-v", "--verbose", is_flag=True, help="Show operation details.")
@click.option("-q", "--quiet", is_flag=True, help="Suppress progress messages.")
@click.option("-d", "--debug", is_flag=True, help="Show full request details.")
@click.option("--dry-run", is_flag=True, help="Show the prompt without calling the model.")
@click.option("--timeout", type=float, default=None, help="Abort the query after this many seconds.")
def ask(
    words: Tuple[str, ...],
    profile_name: Optional[str],
    no_cache: bool,
    explain: bool,
    as_json: bool,
    tokens: bool,
    verbose: bool,
    quiet: bool,
    debug: bool,
    dry_run: bool,
    timeout: Optional[float],
) -> None:
    """Answer a question about a tool from its man page.

    WORDS is ``[SECTION] TOOL QUESTION...`` or ``-s SECTION TOOL QUESTION...``,
    e.g. ``askman ask lsof which ports does pid 42 use``.
    """
    logger = configure_logging(verbose=verbose, debug=debug)
    tool, section, question_words = parse_command(words)
    if not tool:
        raise click.UsageError("no command specified")
    if not question_words:
        raise click.UsageError(f"no question specified, e.g. askman ask {tool} how do I ...")
    question = " ".join(question_words)

    try:
        config = load_config()
        prepared = prepare(config, tool, question, section, explain, profile_name)
    except AskmanError as exc:
        raise _fail(exc) from exc
    profile = prepared.profile
    logger.info("Command: %s  Section: %s  Question: %s", tool, section or "-", question)
    logger.info("Using profile: %s (%s %s)", profile.name, profile.provider, profile.model)

    if debug or dry_run:
        user_prompt = prepared.prompts.user_prompt()
        click.echo(f"=== System Prompt ===\n{prepared.prompts.system_prompt()}\n", err=True)
        click.echo(f"=== User Prompt (first 500 chars) ===\n{_truncate(user_prompt, 500)}\n", err=True)
        click.echo(f"=== User Prompt length: {len(user_prompt)} chars, ~{prepared.prompt_tokens} tokens ===", err=True)
    if dry_run:
        return

    pricing = default_table()
    ctx = CallContext(timeout=timeout)
    show_progress = not (quiet or verbose or debug or as_json)
    mode = ExecutionMode.STREAMING if show_progress else ExecutionMode.BLOCKING
    try:
        if show_progress:
            with stderr_console.status(f"Sending query to {profile.model}...") as status:
                hooks = QueryHooks(
                    on_first_content=lambda: status.update(f"Getting command from {profile.model}...")
                )
                result = answer(config, prepared, mode, not no_cache, ctx, hooks, pricing)
        else:
            result = answer(config, prepared, mode, not no_cache, ctx, None, pricing)
    except KeyboardInterrupt:
        ctx.cancel()
        raise _fail(QueryCancelledError("query cancelled"))
    except AskmanError as exc:
        raise _fail(exc) from exc

    parsed, resp = result.parsed, result.response
    if result.retried:
        logger.info("Answer produced by the strict retry")
    entry = pricing.get(resp.model)

    if as_json:
        payload = {
            "command": parsed.command,
            "metadata": {
                "provider": resp.provider,
                "model": resp.model,
                "tokens_input": resp.tokens_input,
                "tokens_output": resp.tokens_output,
                "cached": resp.cached,
            },
        }
        if parsed.explanation:
            payload["explanation"] = parsed.explanation
        if entry is not None:
            payload["metadata"]["cost"] = entry.cost(resp.tokens_input, resp.tokens_output)
        click.echo(json.dumps(payload, indent=2))
    else:
        click.echo(parsed.command)
        if explain and parsed.explanation:
            click.echo()
            click.echo(parsed.explanation)
        if tokens:
            click.echo()
            click.echo(format_usage(resp.tokens_input, resp.tokens_output, entry, pricing.last_updated))
            if not resp.usage_reported:
                click.echo("  (the backend did not report usage; counts are zero)")

    if is_dangerous(parsed.command):
        click.echo("Warning: this command may be destructive. Review it before running.", err=True)


@cli.command()
@click.option("--name", required=True, type=str, help="Profile name (e.g. openai-gpt4o-mini)")
@click.option("--provider", required=True, type=click.Choice(["openai", "ollama"]), help="Model provider")
@click.option("--model", required=True, type=str, help="Model name (e.g. gpt-4o-mini, llama3.2:latest)")
@click.option("--context-window", type=int, default=0, help="Context window in tokens (0 = auto/default)")
@click.option("--default/--no-default", "make_default", default=True, help="Make this the default profile")
def configure(name: str, provider: str, model: str, context_window: int, make_default: bool) -> None:
    """Add or update a profile."""
    try:
        config = load_config()
        config.add_profile(Profile(name=name, provider=provider, model=model, context_window=context_window))
        if make_default or not config.default_profile:
            config.default_profile = name
        save_config(config)
    except AskmanError as exc:
        raise _fail(exc) from exc
    click.echo(f"Configuration updated. Profile={name}, Provider={provider}, Model={model}")
    if provider == "openai":
        click.echo("Set your API key with: export OPENAI_API_KEY=sk-...")
    else:
        click.echo("Make sure Ollama is running: ollama serve")


@cli.command(name="list-profiles")
def list_profiles() -> None:
    """Show all configured profiles."""
    try:
        config = load_config()
    except AskmanError as exc:
        raise _fail(exc) from exc
    if not config.profiles:
        click.echo("No profiles configured. Run 'askman configure' to create one.")
        return
    for name, profile in config.profiles.items():
        marker = "*" if name == config.default_profile else " "
        click.echo(f"{marker} {name}")
        click.echo(f"    Provider: {profile.provider}")
        click.echo(f"    Model:    {profile.model}")
    click.echo("* = default profile")


@cli.command(name="set-profile")
@click.argument("name")
def set_profile(name: str) -> None:
    """Set the default profile."""
    try:
        config = load_config()
        if name not in config.profiles:
            available = ", ".join(sorted(config.profiles)) or "none"
            raise click.ClickException(f"Profile '{name}' not found. Available profiles: {available}")
        config.default_profile = name
        save_config(config)
    except AskmanError as exc:
        raise _fail(exc) from exc
    click.echo(f"Default profile set to: {name}")


@cli.command(name="test-config")
def check_config() -> None:
    """Validate all profiles."""
    try:
        config = load_config()
    except AskmanError as exc:
        raise _fail(exc) from exc
    if not config.profiles:
        raise click.ClickException("no profiles configured")

    click.echo("Testing profiles...")
    click.echo()
    has_errors = False
    for name, profile in config.profiles.items():
        click.echo(f"Testing {name} ({profile.provider} {profile.model})... ", nl=False)
        problem = check_profile(profile)
        if problem:
            click.echo(f"❌ {problem}")
            has_errors = True
        else:
            click.echo("✓")

    if has_errors:
        raise click.ClickException("some profiles have configuration issues")
    click.echo()
    click.echo("✓ All profiles configured correctly")


@cli.command(name="list-models")
@click.option("-p", "--profile", "profile_name", default=None, help="Profile whose provider to query.")
def list_models(profile_name: Optional[str]) -> None:
    """List available models for the active profile's provider."""
    pricing = default_table()
    try:
        profile = load_config().active_profile(profile_name)
        provider, _ = build_provider(profile, pricing)
        models = provider.get_available_models(CallContext(timeout=30))
    except AskmanError as exc:
        raise _fail(exc) from exc
    if not models:
        click.echo(
            f"No models found for provider '{profile.provider}'. You can download models using "
            "the provider's CLI, e.g. 'ollama pull llama3.2'."
        )
        return
    for m in models:
        if m.pricing:
            click.echo(
                f"{m.id}  ({m.display_name}, ${m.pricing.input_per_million:.2f} in / "
                f"${m.pricing.output_per_million:.2f} out per 1M tokens)"
            )
        else:
            click.echo(m.id)


def _cache() -> CacheStore:
    try:
        config = load_config()
    except AskmanError as exc:
        raise _fail(exc) from exc
    return CacheStore(cache_dir(), config.cache_days)


@cli.command(name="cache-stats")
def cache_stats() -> None:
    """Show cache statistics."""
    store = _cache()
    try:
        stats = store.get_stats()
    except AskmanError as exc:
        raise _fail(exc) from exc
    click.echo("Cache Statistics:")
    click.echo(f"  Total entries:    {stats.total_entries}")
    click.echo(f"  Total size:       {stats.total_size_bytes / 1024.0:.2f} KB")
    click.echo(f"  Total hits:       {stats.total_hits}")
    if stats.oldest_entry:
        click.echo(f"  Oldest entry:     {stats.oldest_entry:%Y-%m-%d %H:%M:%S}")
    if stats.newest_entry:
        click.echo(f"  Newest entry:     {stats.newest_entry:%Y-%m-%d %H:%M:%S}")
    click.echo(f"  Cache directory:  {store.cache_dir}")
    click.echo(f"  Max age:          {store.max_age_days} days")


@cli.command(name="clear-cache")
def clear_cache() -> None:
    """Clear all cached responses."""
    try:
        removed = _cache().clear()
    except AskmanError as exc:
        raise _fail(exc) from exc
    click.echo(f"Cleared {removed} cached entries")


@cli.command(name="clean-cache")
def clean_cache() -> None:
    """Remove expired cached responses."""
    try:
        removed = _cache().clean_expired()
    except AskmanError as exc:
        raise _fail(exc) from exc
    click.echo(f"Removed {removed} expired entries")


@cli.command(name="serve")
@click.option("--host", default="127.0.0.1", help="Bind address for the API server")
@click.option("--port", default=5005, help="Port for the API server")
def serve(host: str, port: int) -> None:
    """Run the HTTP server exposing a JSON API for answering questions."""
    # Imported lazily so plain CLI use does not load the web stack.
    import uvicorn

    from .server import create_app

    configure_logging(verbose=True)
    try:
        app = create_app()
    except AskmanError as exc:
        raise _fail(exc) from exc
    click.echo(f"askman server running on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
