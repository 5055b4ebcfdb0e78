import typer
from pathlib import Path
from typing import Optional, Tuple

from pydantic import ValidationError

from obsctl.cli.formatter import OutputFormatter
from obsctl.config.loader import load_settings
from obsctl.config.validation import load_configuration
from obsctl.core.models import StackSettings
from obsctl.core.topology import build_registry
from obsctl.health.reporter import StatusReporter
from obsctl.host.commands import CommandRunner
from obsctl.host.supervisor import Supervisor, SystemdSupervisor
from obsctl.preflight.checker import PreconditionChecker
from obsctl.runtime.install import EXIT_CONFIG, Installer
from obsctl.runtime.uninstall import Uninstaller
from obsctl.utils.diagnostics import ConfigError, failures

app = typer.Typer(name="obsctl", help="Observability stack lifecycle orchestrator", rich_markup_mode=None)

SETTINGS_OPTION = typer.Option(None, "--settings", help="Path to obsctl.yaml.")
ENV_FILE_OPTION = typer.Option(None, "--env-file", help="Path to the stack .env file.")


def resolve_settings(settings_file: Optional[Path], env_file: Optional[Path]) -> StackSettings:
    try:
        settings = load_settings(settings_file)
    except (OSError, ValueError, ValidationError) as e:
        OutputFormatter.log(f"Invalid obsctl settings: {e}", severity="critical")
        raise typer.Exit(code=EXIT_CONFIG)
    if env_file is not None:
        settings = settings.model_copy(update={"env_file": env_file})
    return settings


def build_host(settings: StackSettings) -> Tuple[CommandRunner, Supervisor]:
    runner = CommandRunner(settings.command_timeout_seconds)
    return runner, SystemdSupervisor(runner)


def _confirm_prompt(text: str) -> str:
    try:
        return typer.prompt(text, default="", show_default=False)
    except typer.Abort:
        # Closed stdin or Ctrl-C counts as declining.
        typer.echo()
        return ""


@app.command()
def install(
    settings_file: Optional[Path] = SETTINGS_OPTION,
    env_file: Optional[Path] = ENV_FILE_OPTION,
):
    """
    Install or converge the observability stack.
    """
    settings = resolve_settings(settings_file, env_file)
    runner, supervisor = build_host(settings)
    installer = Installer(settings, runner=runner, supervisor=supervisor, log=OutputFormatter.log)

    result = installer.run()
    OutputFormatter.print_findings(result.findings, title="Install Findings", include_info=False)
    if result.sequence is not None:
        OutputFormatter.print_sequence(result.sequence, title="Service Start Sequence")

    if result.ok:
        changed = len(result.materialization.changes) if result.materialization else 0
        written = len(result.units.written) if result.units else 0
        OutputFormatter.log(
            f"Install complete ({changed} filesystem changes, {written} units written).",
            severity="success",
        )
        OutputFormatter.log("Run 'obs-health-check' to verify the stack.", severity="info")
        return

    OutputFormatter.log(result.error or "Install failed.", severity="error")
    raise typer.Exit(code=result.exit_code)


@app.command()
def uninstall(
    remove_data: bool = typer.Option(False, "--remove-data", help="Also delete the data root (asks for DELETE)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the first confirmation prompt."),
    settings_file: Optional[Path] = SETTINGS_OPTION,
):
    """
    Stop and remove the observability stack. Data is preserved unless --remove-data is given.
    """
    settings = resolve_settings(settings_file, None)
    runner, supervisor = build_host(settings)
    uninstaller = Uninstaller(
        settings,
        prompt=_confirm_prompt,
        runner=runner,
        supervisor=supervisor,
        log=OutputFormatter.log,
    )

    result = uninstaller.run(remove_data=remove_data, assume_yes=yes)
    if result.cancelled:
        return
    if result.sequence is not None:
        OutputFormatter.print_sequence(result.sequence, title="Service Stop Sequence")
    OutputFormatter.print_findings(result.findings, title="Uninstall Findings")

    if result.error:
        OutputFormatter.log(result.error, severity="error")
        raise typer.Exit(code=result.exit_code)

    if result.data_removed:
        OutputFormatter.log(f"Removed {settings.data_root}", severity="warning")
    OutputFormatter.log("Uninstall complete.", severity="success")


@app.command()
def health(
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    settings_file: Optional[Path] = SETTINGS_OPTION,
):
    """
    Probe every service and exit 1 when any probe fails.
    """
    settings = resolve_settings(settings_file, None)
    _, supervisor = build_host(settings)
    report = StatusReporter(settings, build_registry(), supervisor).run()

    if json_output:
        OutputFormatter.print_data(report)
    else:
        OutputFormatter.print_health(report)
    raise typer.Exit(code=report.summary.exit_code)


@app.command()
def preflight(
    settings_file: Optional[Path] = SETTINGS_OPTION,
    env_file: Optional[Path] = ENV_FILE_OPTION,
):
    """
    Validate configuration and host readiness without changing anything.
    """
    settings = resolve_settings(settings_file, env_file)
    registry = build_registry()
    runner, supervisor = build_host(settings)

    try:
        findings = load_configuration(settings.env_file, registry.start_order()).findings
    except ConfigError as e:
        findings = list(e.findings)

    checker = PreconditionChecker(settings, registry.start_order(), runner, supervisor)
    findings.extend(checker.run(require_privilege=False).findings)
    OutputFormatter.print_findings(findings, title="Pre-flight Checklist")

    failed = failures(findings)
    if failed:
        OutputFormatter.log(f"{len(failed)} check(s) failed.", severity="error")
        raise typer.Exit(code=1)
    OutputFormatter.log("Pre-flight checks passed.", severity="success")


def _single_command_app(command) -> typer.Typer:
    standalone = typer.Typer(rich_markup_mode=None, add_completion=False)
    standalone.command()(command)
    return standalone


install_app = _single_command_app(install)
uninstall_app = _single_command_app(uninstall)
health_app = _single_command_app(health)
preflight_app = _single_command_app(preflight)


if __name__ == "__main__":
    app()
