"""CLI entry point for the load generation engine."""

import asyncio
import logging
import signal
import sys

import click

from vuflow.evidence import append_event, event_from_report, read_events
from vuflow.generator import reference_config, write_yaml_config
from vuflow.loader import ConfigurationError, load_config
from vuflow.orchestrator import TestRun, report_to_json

THRESHOLD_FAILURE_EXIT = 99


@click.group()
def main():
    """vuflow -- drive virtual users through scenarios and check thresholds."""


@main.command()
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True),
    help="Path to a run configuration file (YAML or JSON).",
)
@click.option(
    "--out",
    default=None,
    type=click.Path(),
    help="Optional output path for the JSON report.",
)
@click.option(
    "--log",
    "log_path",
    default=None,
    type=click.Path(),
    help="Optional path to the evidence log (JSONL). Appends an entry when provided.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def run(config_path, out, log_path, verbose):
    """Run the scenarios in a configuration and evaluate its thresholds."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(config_path)
        test_run = TestRun(config)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    report = asyncio.run(_run_with_signals(test_run))

    click.echo(f"Status: {report.verdict.status.upper()}")
    click.echo(report.verdict.narrative)
    for name, timing in report.scenarios.items():
        if timing.skipped:
            click.echo(f"  {name}: skipped")
        else:
            click.echo(
                f"  {name}: {timing.iterations} iterations, "
                f"peak {timing.peak_vus} VUs, {timing.duration:.1f}s"
            )
    if report.aborted:
        click.echo(f"Run stopped early: {report.abort_reason}")

    if out:
        with open(out, "w") as f:
            f.write(report_to_json(report) + "\n")
        click.echo(f"Report written to {out}")

    if log_path:
        append_event(event_from_report(report, config_path), log_path)
        click.echo(f"Evidence logged to {log_path}")

    if not report.passed:
        sys.exit(THRESHOLD_FAILURE_EXIT)


@main.command()
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True),
    help="Path to the run configuration to validate.",
)
def validate(config_path):
    """Validate a run configuration without generating any load."""
    try:
        config = load_config(config_path)
        TestRun(config)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(
        f"OK: {len(config.scenarios)} scenario(s), {len(config.thresholds)} threshold(s)"
    )


@main.command()
@click.option(
    "--out",
    required=True,
    type=click.Path(),
    help="Where to write the reference configuration (YAML).",
)
@click.option("--base-url", default="http://localhost:3001", help="Target service URL.")
def init(out, base_url):
    """Write the reference constant / ramping / spike configuration."""
    write_yaml_config(reference_config(base_url), out)
    click.echo(f"Config written to {out}")


@main.command()
@click.option(
    "--log",
    "log_path",
    required=True,
    type=click.Path(),
    help="Evidence log (JSONL) written by `run --log`.",
)
@click.option("--last", default=10, show_default=True, type=click.IntRange(min=1),
              help="How many of the most recent runs to show.")
def history(log_path, last):
    """List recent runs recorded in an evidence log."""
    events = read_events(log_path, last=last)
    if not events:
        click.echo(f"No runs recorded in {log_path}")
        return
    for event in events:
        line = f"{event.ts}  {event.status.upper():4}  {event.config}"
        if event.aborted:
            line += "  (stopped early)"
        click.echo(line)
        for label in event.breached:
            click.echo(f"    breached {label}")


async def _run_with_signals(test_run: TestRun):
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, test_run.stop, f"received {sig.name}")
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            pass
    try:
        return await test_run.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


if __name__ == "__main__":
    main()
