"""CLI entry point.

Provides the command-line interface with commands for:
- run: Execute a script in a sandbox container (or directly on the host)
- compose: Print the script that would run inside the container
- status: Check the Docker control plane
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from shellbox.exceptions import ShellboxError, ValidationError
from shellbox.logging_config import configure_logging
from shellbox.sandbox.models import ExecutionRequest, ExecutionResult

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="shellbox",
    help="Run shell scripts in disposable, resource-bounded containers",
    add_completion=False,
    no_args_is_help=True,
)

console = Console(stderr=True)

TIMEOUT_EXIT_CODE = 124

ScriptFileArg = Annotated[
    Optional[Path],  # noqa: UP007
    typer.Argument(help="Script file to run ('-' reads stdin)"),
]
CommandOpt = Annotated[
    Optional[str],  # noqa: UP007
    typer.Option("--command", "-c", help="Inline script text"),
]
MountTypeOpt = Annotated[
    str,
    typer.Option("--mount-type", "-m", help="Network mount: none, nfs or smb"),
]
MountSourceOpt = Annotated[
    Optional[str],  # noqa: UP007
    typer.Option("--mount-source", help="server:/path (NFS) or //server/share (SMB)"),
]
MountPointOpt = Annotated[
    Optional[str],  # noqa: UP007
    typer.Option("--mount-point", help="Mount point inside the container"),
]
MountOptionsOpt = Annotated[
    Optional[str],  # noqa: UP007
    typer.Option("--mount-options", help="Mount options (default rw,sync for NFS, rw for SMB)"),
]
MountUserOpt = Annotated[
    Optional[str],  # noqa: UP007
    typer.Option("--mount-username", help="SMB username"),
]
MountPasswordOpt = Annotated[
    Optional[str],  # noqa: UP007
    typer.Option("--mount-password", help="SMB password", envvar="SHELLBOX_MOUNT_PASSWORD"),
]
ImageOpt = Annotated[
    Optional[str],  # noqa: UP007
    typer.Option("--image", "-i", help="Docker image (must provide bash)"),
]
TimeoutOpt = Annotated[
    Optional[int],  # noqa: UP007
    typer.Option("--timeout", "-t", min=1, help="Timeout in seconds"),
]
RootOpt = Annotated[
    bool,
    typer.Option("--run-as-root", help="Run the script as root instead of the unprivileged user"),
]


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Shellbox command-line interface."""
    configure_logging("DEBUG" if verbose else None)


def _read_script(script_file: Path | None, command: str | None) -> str:
    if command is not None and script_file is not None:
        console.print("[red]Pass either a script file or --command, not both[/red]")
        raise typer.Exit(code=2)
    if command is not None:
        return command
    if script_file is None:
        console.print("[red]No script given. Pass a script file or --command[/red]")
        raise typer.Exit(code=2)
    if str(script_file) == "-":
        return sys.stdin.read()
    try:
        return script_file.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Cannot read {script_file}: {e}[/red]")
        raise typer.Exit(code=2) from e


def _build(
    script: str,
    mount_type: str,
    mount_source: str | None,
    mount_point: str | None,
    mount_options: str | None,
    mount_username: str | None,
    mount_password: str | None,
    image: str | None,
    timeout: int | None,
    run_as_root: bool,
) -> ExecutionRequest:
    from shellbox.sandbox.runner import build_request

    try:
        return build_request(
            script,
            mount_type=mount_type,
            mount_source=mount_source,
            mount_point=mount_point,
            mount_options=mount_options,
            mount_username=mount_username,
            mount_password=mount_password,
            image=image,
            timeout_seconds=timeout,
            run_as_root=run_as_root,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid request: {e}[/red]")
        raise typer.Exit(code=2) from e


def exit_code_for(result: ExecutionResult) -> int:
    """Map a result onto a process exit code."""
    if result.timed_out:
        return TIMEOUT_EXIT_CODE
    if result.exit_code is None:
        return 1
    return result.exit_code


@app.command()
def run(
    script_file: ScriptFileArg = None,
    command: CommandOpt = None,
    mount_type: MountTypeOpt = "none",
    mount_source: MountSourceOpt = None,
    mount_point: MountPointOpt = None,
    mount_options: MountOptionsOpt = None,
    mount_username: MountUserOpt = None,
    mount_password: MountPasswordOpt = None,
    image: ImageOpt = None,
    timeout: TimeoutOpt = None,
    run_as_root: RootOpt = False,
    direct: Annotated[
        bool,
        typer.Option("--direct", help="Run on the host without a container (development only)"),
    ] = False,
    workdir: Annotated[
        Optional[str],  # noqa: UP007
        typer.Option("--workdir", help="Working directory for --direct runs"),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON"),
    ] = False,
) -> None:
    """Run a shell script in a sandbox container.

    The script's stdout and stderr are forwarded and its exit code is
    returned (124 on timeout).

    Examples:
        shellbox run -c 'echo hi'
        shellbox run backup.sh --mount-type nfs --mount-source nas:/exports/backup
        shellbox run report.sh -m smb --mount-source //fs/share --mount-username svc
    """
    script = _read_script(script_file, command)
    request = _build(
        script,
        mount_type,
        mount_source,
        mount_point,
        mount_options,
        mount_username,
        mount_password,
        image,
        timeout,
        run_as_root,
    )

    try:
        result = asyncio.run(_execute(request, direct, working_directory=workdir))
    except ShellboxError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=2) from e

    if as_json:
        typer.echo(json.dumps(result.to_action_output(), indent=2))
    else:
        typer.echo(result.output, nl=False)
        typer.echo(result.error_output, nl=False, err=True)
        if result.timed_out:
            console.print(f"[yellow]⏱ Timed out after {request.timeout_seconds}s[/yellow]")

    raise typer.Exit(code=exit_code_for(result))


async def _execute(
    request: ExecutionRequest,
    direct: bool,
    working_directory: str | None = None,
) -> ExecutionResult:
    if direct:
        from shellbox.sandbox.direct import DirectRunner

        return await DirectRunner().run(request, working_directory=working_directory)
    if working_directory:
        logger.warning("--workdir only applies to --direct runs; the sandbox uses its fixed workspace")

    from shellbox.sandbox.runner import SandboxRunner

    async with SandboxRunner() as runner:
        return await runner.run(request)


@app.command()
def compose(
    script_file: ScriptFileArg = None,
    command: CommandOpt = None,
    mount_type: MountTypeOpt = "none",
    mount_source: MountSourceOpt = None,
    mount_point: MountPointOpt = None,
    mount_options: MountOptionsOpt = None,
    mount_username: MountUserOpt = None,
    mount_password: MountPasswordOpt = None,
    run_as_root: RootOpt = False,
    encoded: Annotated[
        bool,
        typer.Option("--encoded", help="Print the base64 transport form"),
    ] = False,
) -> None:
    """Print the script that would run inside the container."""
    from shellbox.sandbox.composer import ScriptComposer

    script = _read_script(script_file, command)
    request = _build(
        script,
        mount_type,
        mount_source,
        mount_point,
        mount_options,
        mount_username,
        mount_password,
        None,
        None,
        run_as_root,
    )
    composed = ScriptComposer().compose(request)
    if encoded:
        typer.echo(composed.encoded)
    elif sys.stdout.isatty():
        Console().print(Syntax(composed.text, "bash", line_numbers=True))
    else:
        typer.echo(composed.text, nl=False)


@app.command()
def status() -> None:
    """Check Docker control-plane connectivity."""
    from shellbox.sandbox.runner import SandboxRunner

    async def _check() -> dict:
        async with SandboxRunner() as runner:
            return await runner.check_runtime()

    info = asyncio.run(_check())

    table = Table(title="Sandbox Runtime", show_header=True)
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_row("Socket", info["socket_path"])
    table.add_row(
        "Docker",
        f"[green]✓ {info.get('docker_version', '')}[/green]" if info["docker_available"] else "[red]✗ unreachable[/red]",
    )
    table.add_row(
        "Default image",
        "[green]✓ cached[/green]" if info["image_available"] else "[yellow]not cached[/yellow]",
    )
    Console().print(table)

    if info["errors"]:
        console.print(Panel("\n".join(info["errors"]), title="Problems", border_style="red"))
    if not info["docker_available"]:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
