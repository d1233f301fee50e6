"""
cargo-wasix — CLI entrypoint.

Usage:
    cargo wasix build [cargo args...]
    cargo wasix run64 --release -- arg1 arg2
    cargo wasix self clear-cache
    python -m cargo_wasix.main --help

Cargo invokes external subcommands as ``cargo-wasix wasix <args>``; the
leading ``wasix`` is dropped before click parses anything.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import sys
from pathlib import Path

import click

from cargo_wasix import __version__
from cargo_wasix.core.observability.logging_config import (
    FILE_ENV,
    FILE_LEVEL_ENV,
    resolve_level,
    setup_logging,
)

_SUBCOMMAND_HELP = {
    "build": "Compile the local package for WASIX and post-process the modules.",
    "run": "Build, then run a binary with the WASIX runtime.",
    "test": "Build and run tests with the WASIX runtime.",
    "bench": "Build and run benchmarks with the WASIX runtime.",
    "check": "Type-check the package for WASIX (no post-processing).",
    "fix": "Apply compiler suggestions for the WASIX target.",
}


def _self_exe() -> str | None:
    """Path Cargo should launch as the runner shim."""
    candidate = os.path.abspath(sys.argv[0]) if sys.argv and sys.argv[0] else ""
    if candidate and not candidate.endswith(".py") and os.access(candidate, os.X_OK):
        return candidate
    return shutil.which("cargo-wasix")


def _fail(error: Exception) -> None:
    """Print one actionable message and exit with the error's code."""
    from cargo_wasix.core.errors import UnderlyingToolFailure

    code = getattr(error, "exit_code", 1)
    if isinstance(error, UnderlyingToolFailure) and error.hidden:
        sys.exit(code)
    click.secho(f"error: {error}", fg="red", err=True)
    sys.exit(code)


def _load_settings(ctx: click.Context):
    from cargo_wasix.core.config.loader import load_settings
    from cargo_wasix.core.errors import ConfigError

    try:
        return load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        _fail(e)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "-V", "--version", prog_name="cargo-wasix")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to wasix.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Build, post-process and run Rust crates for WASIX."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    level = resolve_level(debug=debug, verbose=verbose, quiet=quiet, env=os.environ)
    ctx.obj["log_level"] = level
    _setup_logging(level)


def _setup_logging(level: str) -> None:
    setup_logging(
        level=level,
        log_file=os.environ.get(FILE_ENV),
        log_file_level=os.environ.get(FILE_LEVEL_ENV),
    )


# ── Cargo subcommands ───────────────────────────────────────────


def _run_cargo(ctx: click.Context, subcommand: str, bit_width: int, cargo_args: list[str]) -> None:
    from cargo_wasix.core.errors import WasixError
    from cargo_wasix.core.use_cases.build import BuildRequest, run_build

    settings = _load_settings(ctx)
    request = BuildRequest(subcommand, bit_width, cargo_args, project_root=Path.cwd())

    # `cargo wasix build -v` turns on our progress output too.
    if request.invocation().verbose and logging.getLogger().level > logging.INFO and not ctx.obj["quiet"]:
        _setup_logging("INFO")

    try:
        result = run_build(request, settings, self_exe=_self_exe(), echo=click.echo)
    except WasixError as e:
        _fail(e)

    for diag in result.diagnostics:
        if not ctx.obj["quiet"]:
            click.secho(f"warning: {diag.summary()}", fg="yellow", err=True)
    sys.exit(result.exit_code)


class _CargoCommand(click.Command):
    """Hands every argument to cargo untouched, including `--` and `--help`."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        ctx.meta["cargo_args"] = list(args)
        return super().parse_args(ctx, [])


def _make_cargo_command(subcommand: str, bit_width: int) -> click.Command:
    name = subcommand if bit_width == 32 else f"{subcommand}64"
    help_text = _SUBCOMMAND_HELP[subcommand]
    if bit_width == 64:
        help_text = help_text.replace("WASIX", "64-bit WASIX")

    @click.pass_context
    def callback(ctx: click.Context) -> None:
        _run_cargo(ctx, subcommand, bit_width, ctx.meta["cargo_args"])

    return _CargoCommand(
        name,
        callback=callback,
        help=help_text,
        context_settings={"help_option_names": []},
    )


for _sub in ("build", "run", "test", "bench", "check", "fix"):
    cli.add_command(_make_cargo_command(_sub, 32))
    if _sub != "fix":
        cli.add_command(_make_cargo_command(_sub, 64))


# ── Self management ─────────────────────────────────────────────


@cli.group("self")
def self_group() -> None:
    """Manage cargo-wasix's own state."""


@self_group.command("clear-cache")
@click.pass_context
def clear_cache(ctx: click.Context) -> None:
    """Remove every downloaded tool and cached dataset."""
    from cargo_wasix.core.errors import WasixError
    from cargo_wasix.core.services.tool_cache import cache_from_settings

    settings = _load_settings(ctx)
    cache = cache_from_settings(settings)
    try:
        removed = cache.clear()
    except WasixError as e:
        _fail(e)
    if not ctx.obj["quiet"]:
        click.secho(f"Cleared {removed} cache entries from {cache.root}", fg="green", err=True)


@self_group.command("cache-dir")
@click.pass_context
def cache_dir(ctx: click.Context) -> None:
    """Print the cache root."""
    settings = _load_settings(ctx)
    click.echo(str(settings.cache_root()))


@self_group.command("cache")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def cache_list(ctx: click.Context, as_json: bool) -> None:
    """List installed tools."""
    from cargo_wasix.core.services.tool_cache import cache_from_settings

    settings = _load_settings(ctx)
    tools = cache_from_settings(settings).installed()

    if as_json:
        click.echo(json.dumps([t.model_dump() for t in tools], indent=2))
        return
    if not tools:
        click.echo("No tools installed.")
        return
    for tool in tools:
        click.echo(f"{tool.name:<14} {tool.version:<10} {tool.platform:<16} {tool.executable_path}")


@cli.command()
def version() -> None:
    """Print the cargo-wasix version."""
    click.echo(f"cargo-wasix {__version__}")


# ── Process entry ───────────────────────────────────────────────


def entry() -> None:
    """Console-script entry point."""
    from cargo_wasix.core.services.cargo import SHIM_ENV, shim_message

    # Launched by Cargo as the runner: report the run and let the parent do it.
    if os.environ.get(SHIM_ENV):
        click.echo(shim_message(sys.argv[1:]))
        return

    args = sys.argv[1:]
    if args and args[0] == "wasix":
        args = args[1:]
    cli.main(args=args, prog_name="cargo-wasix")


if __name__ == "__main__":
    entry()
