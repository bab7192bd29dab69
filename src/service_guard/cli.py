"""Command-line interface for Service Guard."""

import json
import os
import sys
from pathlib import Path
from typing import Optional

import click

from .config import ConfigurationError, GuardConfig, parse_target_list
from .supervisor import MonitorSupervisor, setup_logging


def _load_config(config_path: Optional[str]) -> GuardConfig:
    if config_path:
        return GuardConfig.from_yaml(config_path)
    return GuardConfig()


config_option = click.option(
    "-c", "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to configuration file (YAML)",
)


@click.group()
@click.version_option(package_name="service-guard")
def main():
    """Service Guard - Keep services alive and restart them when they die."""
    pass


@main.command()
@config_option
@click.argument("targets", required=False)
@click.argument("duration", required=False, type=float)
@click.option(
    "-d", "--daemon",
    is_flag=True,
    help="Run as daemon (background process)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Dry-run mode (no actual restarts)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose logging",
)
def run(
    config_path: Optional[str],
    targets: Optional[str],
    duration: Optional[float],
    daemon: bool,
    dry_run: bool,
    verbose: bool,
):
    """Start guarding TARGETS, polling every DURATION milliseconds.

    TARGETS is a list of names separated by spaces, ',' or ';'. Both default
    to the values in the configuration file.
    """
    try:
        config = _load_config(config_path)
    except Exception as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    if dry_run:
        config.dry_run = True

    if verbose:
        config.log_level = "DEBUG"

    names = parse_target_list(targets) if targets else config.target_names()
    if not names:
        click.echo(
            "Specify the targets to guard and optionally the poll interval in milliseconds, "
            "e.g. \"nginx 5000\" polls nginx every 5 seconds.",
            err=True,
        )
        sys.exit(1)

    errors = config.validate(names)
    if errors:
        # Bad targets are skipped at startup; the rest are still guarded
        for error in errors:
            click.echo(f"Warning: {error}", err=True)

    if daemon:
        # daemonizing changes directory to /
        config.base_dir = str(config.base_path.resolve())
        _daemonize()

    setup_logging(config)
    supervisor = MonitorSupervisor(config, targets=names, duration=duration)
    supervisor.run(interactive=not daemon and sys.stdin.isatty())


@main.command()
@config_option
@click.argument("targets", required=False)
def validate(config_path: Optional[str], targets: Optional[str]):
    """Validate configuration file."""
    try:
        config = _load_config(config_path)
        names = parse_target_list(targets) if targets else config.target_names()
        errors = config.validate(names)

        if errors:
            click.echo("❌ Configuration has errors:", err=True)
            for error in errors:
                click.echo(f"  - {error}", err=True)
            sys.exit(1)
        else:
            click.echo("✅ Configuration is valid")
            click.echo(f"\nTargets configured: {len(names)}")
            for name in names:
                target = config.target(name)
                click.echo(f"  - {name} ({target.probe_kind.value}, every {target.interval:g}s)")

    except (OSError, ValueError, ConfigurationError) as e:
        click.echo(f"❌ Error loading config: {e}", err=True)
        sys.exit(1)


@main.command()
@config_option
@click.argument("targets", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def status(config_path: Optional[str], targets: Optional[str], as_json: bool):
    """Show health of guarded targets."""
    try:
        config = _load_config(config_path)
        supervisor = MonitorSupervisor(config, targets=targets)
        result = supervisor.status()

        if as_json:
            click.echo(json.dumps(result, indent=2))
        else:
            click.echo("Service Guard Status")
            click.echo("=" * 50)

            for name, target_status in result["targets"].items():
                if not target_status["monitored"]:
                    click.echo(f"\n⚪ {name}")
                    click.echo(f"   Not monitored: {target_status['error']}")
                    continue

                icon = {"running": "🟢", "stopped": "🔴"}.get(target_status["health"], "🟡")
                click.echo(f"\n{icon} {name}")
                click.echo(f"   Health: {target_status['health']}")
                click.echo(f"   Probe: {target_status['probe']}")
                if target_status["detail"]:
                    click.echo(f"   Detail: {target_status['detail']}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command()
@config_option
@click.argument("target_name")
@click.option("--dry-run", is_flag=True, help="Dry-run mode (no actual restarts)")
def restart(config_path: Optional[str], target_name: str, dry_run: bool):
    """Run the recovery action for a target now."""
    try:
        config = _load_config(config_path)
        if dry_run:
            config.dry_run = True
        setup_logging(config)

        supervisor = MonitorSupervisor(config, targets=target_name)
        if supervisor.recover(target_name):
            click.echo(f"✅ Recovered {target_name}")
        else:
            click.echo(f"❌ Recovery of {target_name} failed", err=True)
            sys.exit(1)

    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command()
@click.option("-o", "--output", type=click.Path(), help="Output file path")
def init(output: str):
    """Generate a sample configuration file."""
    sample_config = '''# Service Guard Configuration

# Targets guarded when none are given on the command line
targets: nginx, api-server; worker
duration: 5000            # default poll interval in milliseconds

# Global settings
log_file: /var/log/service-guard.log
log_level: INFO
rescue_timeout: 20        # seconds before a rescue command is killed
service_wait_timeout: 60  # seconds to wait for a service to stop or start

# Per-target settings
settings:
  RestartSeconds: 10          # minimum seconds between recovery attempts
  HttpRequest.Timeout: 2000   # HTTP probe timeout in milliseconds

  # Native service: restarted through the service manager
  nginx.Duration: 3000
  nginx.DiagnosticType: NativeService

  # HTTP liveness: 200 or 304 means alive
  api-server.DiagnosticType: HttpRequest
  api-server.DiagnosticArgument: http://localhost:8080/health
  api-server.RescueCmdPath: rescue/restart-api.sh

  # Process by name
  worker.DiagnosticType: ProcessName
  worker.DiagnosticArgument: worker
  worker.RescueCmdPath: rescue/start-worker.sh
  worker.RestartSeconds: 30
'''

    if output:
        Path(output).write_text(sample_config)
        click.echo(f"✅ Sample config written to: {output}")
    else:
        click.echo(sample_config)


def _daemonize():
    """Fork process to run as daemon."""
    # First fork
    try:
        pid = os.fork()
        if pid > 0:
            sys.exit(0)
    except OSError as e:
        sys.stderr.write(f"Fork #1 failed: {e}\n")
        sys.exit(1)

    # Decouple from parent environment
    os.chdir("/")
    os.setsid()
    os.umask(0)

    # Second fork
    try:
        pid = os.fork()
        if pid > 0:
            sys.exit(0)
    except OSError as e:
        sys.stderr.write(f"Fork #2 failed: {e}\n")
        sys.exit(1)

    # Redirect standard file descriptors
    sys.stdout.flush()
    sys.stderr.flush()

    with open("/dev/null", "r") as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())
    with open("/dev/null", "a+") as devnull:
        os.dup2(devnull.fileno(), sys.stdout.fileno())
        os.dup2(devnull.fileno(), sys.stderr.fileno())


if __name__ == "__main__":
    main()
