# cli.py
from __future__ import annotations

import json
import signal
import sys
from pathlib import Path

import click

from gatedci.cache import CacheStore, PipelineCache
from gatedci.capabilities import CapabilityProbe, HostCapabilityProbe, StaticCapabilityProbe
from gatedci.executor import StepExecutor
from gatedci.loader import MalformedDefinition, load_definitions, select_pipeline
from gatedci.logging_config import configure_logging
from gatedci.runner import PipelineRunner
from gatedci.settings import Settings
from gatedci.ui.console import Console, get_console, set_console

EXIT_DEFINITION_ERROR = 2


def _load(ctx, definition: str | None):
    """Load every pipeline from the definition file, exiting on load errors."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    path = Path(definition or settings.definition)

    try:
        return path, load_definitions(path)
    except FileNotFoundError:
        console.print_error(
            "Definition file not found",
            f"Could not find definition file: {path}",
            suggestion="Create gatedci.yml or specify a different path:\n  gatedci run --definition pipelines.yml",
        )
    except MalformedDefinition as e:
        console.print_error(
            "Malformed pipeline definition",
            str(e),
            details=[f"{k}: {v}" for k, v in e.details.items()] or None,
        )
    except Exception as e:
        # python workflow files run arbitrary code
        console.print_error("Could not load definition file", str(path))
        console.print_exception(e)
    sys.exit(EXIT_DEFINITION_ERROR)


def _select(definitions, name: str | None):
    try:
        return select_pipeline(definitions, name)
    except MalformedDefinition as e:
        get_console().print_error(
            "Unknown pipeline",
            str(e),
            suggestion="Pick one explicitly:\n  gatedci run --pipeline <name>",
        )
        sys.exit(EXIT_DEFINITION_ERROR)


def _probe(settings: Settings, with_caps, without_caps) -> CapabilityProbe:
    if settings.capabilities is not None:
        tags = (set(settings.capabilities) | set(with_caps)) - set(without_caps)
        return StaticCapabilityProbe(tags)
    return HostCapabilityProbe(force=with_caps, deny=without_caps)


capability_options = [
    click.option(
        "--with-capability",
        "with_caps",
        multiple=True,
        help="Treat a capability as available without probing (repeatable)",
    ),
    click.option(
        "--without-capability",
        "without_caps",
        multiple=True,
        help="Treat a capability as unavailable, e.g. to emulate a hosted runner (repeatable)",
    ),
]


def with_capability_options(fn):
    for option in reversed(capability_options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full step output)",
)
@click.pass_context
def cli(ctx, debug):
    """gatedci: capability-gated, fail-fast CI pipeline runner."""
    console = Console(debug=debug)
    set_console(console)
    configure_logging("DEBUG" if debug else None)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    try:
        ctx.obj["settings"] = Settings.from_env()
    except ValueError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_DEFINITION_ERROR)


@cli.command()
@click.option("--definition", default=None, help="Definition file (defaults to gatedci.yml)")
@click.option("--pipeline", "pipeline_name", default=None, help="Pipeline to run (required if the file declares several)")
@click.option("--workdir", default=".", show_default=True, help="Directory steps run in")
@click.option("--cache-dir", default=None, help="Cache directory (defaults to .gatedci/cache)")
@click.option("--cache/--no-cache", "use_cache", default=True, show_default=True, help="Restore/save declared cache folders")
@click.option("--timeout", default=None, type=float, help="Default per-step timeout in seconds")
@click.option("--report", default=None, type=click.Path(dir_okay=False), help="Write a JSON result report to this path")
@with_capability_options
@click.pass_context
def run(ctx, definition, pipeline_name, workdir, cache_dir, use_cache, timeout, report, with_caps, without_caps):
    """Run one pipeline on this host."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]

    path, definitions = _load(ctx, definition)
    pipeline = _select(definitions, pipeline_name)

    executor = StepExecutor(
        workdir,
        timeout=timeout if timeout is not None else settings.step_timeout,
        output_limit=settings.output_limit,
    )
    cache = None
    if use_cache and pipeline.cache_specs():
        cache = PipelineCache(
            CacheStore(cache_dir or settings.cache_dir),
            workdir=workdir,
            env=pipeline.env,
        )

    runner = PipelineRunner(
        _probe(settings, with_caps, without_caps),
        executor,
        cache=cache,
        on_step_start=console.print_step_start,
        on_step_result=lambda _i, result: console.print_step_result(result),
    )

    def _request_cancel(signum, frame):
        console.print_info(f"\nReceived signal {signum}, cancelling before the next step...")
        runner.cancel()

    previous = {sig: signal.signal(sig, _request_cancel) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        console.print_run_started(
            pipeline=pipeline.name,
            definition=path.name,
            step_count=len(pipeline),
        )
        result = runner.run(pipeline)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    console.print_results(result, pipeline)

    if report:
        Path(report).write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        console.print_debug(f"Wrote report to {report}")

    sys.exit(result.exit_code)


@cli.command()
@click.option("--definition", default=None, help="Definition file (defaults to gatedci.yml)")
@click.option("--pipeline", "pipeline_name", default=None, help="Only show this pipeline")
@with_capability_options
@click.pass_context
def plan(ctx, definition, pipeline_name, with_caps, without_caps):
    """Show which steps would run or be skipped on this host."""
    console = get_console()
    _path, definitions = _load(ctx, definition)
    pipelines = [_select(definitions, pipeline_name)] if pipeline_name else list(definitions.values())

    probe = _probe(ctx.obj["settings"], with_caps, without_caps)
    for p in pipelines:
        console.print_plan(p, {s.name: probe.missing(s.requires) for s in p.steps})


@cli.command()
@click.argument("tags", nargs=-1)
@with_capability_options
@click.pass_context
def probe(ctx, tags, with_caps, without_caps):
    """Show capability resolution for this host (e.g. hardware-virtualization, tool:cargo)."""
    host = _probe(ctx.obj["settings"], with_caps, without_caps)
    get_console().print_capabilities(host.describe(tags))


@cli.command(name="list")
@click.option("--definition", default=None, help="Definition file (defaults to gatedci.yml)")
@click.pass_context
def list_pipelines(ctx, definition):
    """List the pipelines declared in the definition file."""
    console = get_console()
    _path, definitions = _load(ctx, definition)
    for p in definitions.values():
        console.print_info(f"{p.name} ({len(p)} steps)")


if __name__ == "__main__":
    cli()
