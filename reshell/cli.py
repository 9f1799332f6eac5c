"""reshell CLI — command-line interface."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from reshell import __version__

app = typer.Typer(
    name="reshell",
    help="Persistent browser shells with recorded, replayable assistant sessions.",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

SEGMENT_STYLES = {
    "input": "bold cyan",
    "response": "white",
    "tool-use": "yellow",
    "ascii-art": "magenta",
    "sources": "dim",
}


def version_callback(value: bool):
    if value:
        console.print(f"[bold cyan]reshell[/bold cyan] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """reshell — shells that survive the browser tab."""
    pass


# ── Server Commands ─────────────────────────────────────────


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port."),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
):
    """Start the reshell server."""
    import uvicorn

    from reshell.config import ensure_dirs, load_config, setup_logging
    from reshell.server.app import create_app
    from reshell.server.client import get_local_ip

    config = load_config()
    if port is not None:
        config.server.port = port
    if host is not None:
        config.server.host = host

    ensure_dirs()
    setup_logging(log_level)

    port = config.server.port
    console.print("\n[bold cyan]⚡ reshell[/bold cyan]")
    console.print(f"  [dim]Local:   http://localhost:{port}[/dim]")
    if config.server.host not in ("127.0.0.1", "localhost"):
        console.print(f"  [dim]Network: http://{get_local_ip()}:{port}[/dim]")
    console.print(f"  [dim]WS:      ws://localhost:{port}/ws?clientId=...[/dim]")
    console.print(f"  [dim]Files:   {config.files.root}[/dim]")
    console.print()

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=port,
        log_level="warning",
    )


@app.command()
def status(
    port: int = typer.Option(3000, "--port", "-p", help="Server port."),
):
    """Check if the reshell server is running."""
    from reshell.server.client import ServerClient

    health = ServerClient(f"http://localhost:{port}").health()
    if health is None:
        console.print("[red]✗[/red] reshell server is not running")
        console.print("  Start it with: [cyan]reshell serve[/cyan]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] reshell server v{health.get('version', '?')} is running")
    console.print(
        f"  [dim]{health.get('clients', 0)} connected clients, "
        f"{health.get('sessions', 0)} sessions[/dim]"
    )


# ── Config Commands ─────────────────────────────────────────


config_app = typer.Typer(help="Manage reshell configuration.")
app.add_typer(config_app, name="config")


@config_app.command("init")
def config_init():
    """Create default configuration files."""
    from reshell.config import CONFIG_FILE, USER_NOISE_FILE, ensure_dirs, save_default_config

    ensure_dirs()

    if CONFIG_FILE.exists():
        console.print(f"[yellow]Config already exists:[/yellow] {CONFIG_FILE}")
    else:
        path = save_default_config()
        console.print(f"[green]✓[/green] Created config: {path}")

    if not USER_NOISE_FILE.exists():
        example = (
            "# reshell — extra transcript noise rules\n"
            "# Merged on top of the built-in vocabulary.\n"
            "#\n"
            "# extra_spinner_words:\n"
            "#   - Brewing\n"
            "# extra_keywords:\n"
            "#   - 'press tab to'\n"
            "# extra_noise_patterns:\n"
            "#   - '^\\s*\\d+ files? changed'\n"
            "#\n"
            "# overrides:\n"
            "#   content_threshold: 200\n"
            "#   burst_gap_ms: 5\n"
        )
        USER_NOISE_FILE.write_text(example)
        console.print(f"[green]✓[/green] Created noise rules: {USER_NOISE_FILE}")
    else:
        console.print(f"[yellow]Noise rules already exist:[/yellow] {USER_NOISE_FILE}")


@config_app.command("show")
def config_show():
    """Show current configuration."""
    from reshell.config import load_config

    config = load_config()
    console.print_json(data=config.model_dump())


# ── Recording Commands ──────────────────────────────────────


@app.command()
def recordings():
    """List saved assistant recordings, newest first."""
    from reshell.config import RECORDINGS_DIR
    from reshell.terminal.recorder import RecordingStore

    metas = RecordingStore(RECORDINGS_DIR).list()
    if not metas:
        console.print("[dim]No recordings.[/dim]")
        return

    table = Table(title="Recordings")
    table.add_column("ID", style="yellow")
    table.add_column("Session", style="cyan")
    table.add_column("Started", style="dim")
    table.add_column("Events", justify="right")
    table.add_column("First input", style="green")
    table.add_column("Summary")

    for meta in metas:
        if not meta.has_summary:
            summary = ""
        elif meta.summary_stale:
            summary = "[yellow]stale[/yellow]"
        else:
            summary = "[green]✓[/green]"
        started = meta.started_at if meta.ended_at else f"{meta.started_at} [red](interrupted)[/red]"
        table.add_row(
            meta.id,
            meta.session_name,
            started,
            str(meta.event_count),
            (meta.first_input or "")[:60],
            summary,
        )

    console.print(table)


@app.command()
def transcript(
    recording_id: str = typer.Argument(..., help="Recording ID (see `reshell recordings`)."),
    prompt: bool = typer.Option(
        False, "--prompt", help="Print the plain text sent to the assistant on bring-back."
    ),
):
    """Show the cleaned transcript of a recording."""
    from reshell.config import RECORDINGS_DIR
    from reshell.errors import NotFound
    from reshell.terminal.recorder import RecordingStore
    from reshell.transcript import build_clean_transcript, format_transcript_for_prompt

    try:
        recording = RecordingStore(RECORDINGS_DIR).load(recording_id)
    except NotFound:
        console.print(f"[red]✗[/red] No recording named {recording_id}")
        raise typer.Exit(1)

    segments = build_clean_transcript(recording.events)
    if prompt:
        console.print(format_transcript_for_prompt(segments), markup=False, highlight=False)
        return

    console.print(f"[bold]{recording.session_name}[/bold] [dim]{recording.cwd}[/dim]\n")
    for segment in segments:
        style = SEGMENT_STYLES.get(segment.type, "white")
        console.print(f"[{style}]{segment.type:>9}[/{style}] │ ", end="")
        console.print(segment.text, markup=False, highlight=False)


@app.command()
def correct(
    text: str = typer.Argument(..., help="Text to correct."),
    polish: bool = typer.Option(False, "--polish", help="Rewrite for fluency, not just grammar."),
):
    """Correct English text with the configured LLM command and show the diff."""
    import asyncio

    from reshell.config import load_config
    from reshell.diff import compute_word_diff, format_diff
    from reshell.errors import ReshellError
    from reshell.llm import CommandLLM

    llm = CommandLLM.from_config(load_config().llm)
    try:
        corrected = asyncio.run(llm.correct_english(text, "polish" if polish else "grammar"))
    except ReshellError as e:
        console.print(f"[red]✗[/red] {e.message}")
        raise typer.Exit(1)

    # Raw ANSI from format_diff goes straight to the terminal
    typer.echo(format_diff(compute_word_diff(text, corrected)))


@app.command()
def noise(
    line: str = typer.Argument(..., help="A line of terminal output to test."),
):
    """Test a line of output against the transcript noise rules."""
    from rich.markup import escape

    from reshell.transcript.ansi import strip_ansi
    from reshell.transcript.classifier import unwrap_line
    from reshell.transcript.patterns import default_rules, noise_reason

    rules = default_rules()
    clean = unwrap_line(strip_ansi(line), rules)

    console.print(f"Testing: [cyan]{escape(clean)}[/cyan]\n")
    reason = noise_reason(clean, rules)
    if reason:
        console.print(f"  [yellow]NOISE[/yellow] → {reason}")
    else:
        console.print("  [green]KEPT[/green] [dim](no noise rule matched)[/dim]")


if __name__ == "__main__":
    app()
