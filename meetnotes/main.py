"""Main application entry point for MeetNotes."""

import json
import logging
import sys
import time
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .audio.media import MediaTools
from .config import CONFIG_FILENAME, MeetNotesConfig, write_default_config
from .errors import MeetNotesError
from .services import AutoRecorder, MeetingDetector, RecordingSession
from .storage import MeetingStore
from .summarization import SummarizationEngine
from .transcription import FinalTranscriptionEngine, create_speech_backend
from .ui import RecordingScreen

logger = logging.getLogger(__name__)

console = Console()

INGEST_CHUNK_BYTES = 256 * 1024


def setup_logging(config: MeetNotesConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/meetnotes.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("MeetNotes starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def _print_outcome(store: MeetingStore, meeting_id: str) -> None:
    record = store.get_meeting(meeting_id)
    if record is None:
        return
    if record.status == "failed":
        console.print(f"Session {meeting_id} failed: {record.failure_reason}", style="bold red")
        return
    console.print(f"[bold green]{record.title}[/bold green] ({record.status})")
    if record.transcript:
        console.print(record.transcript)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help=f"Path to configuration YAML file (default: looks for {CONFIG_FILENAME})")
@click.option("--log-level", default="INFO", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.version_option(package_name="meetnotes")
@click.pass_context
def cli(ctx: click.Context, config_path: str, log_level: str) -> None:
    """MeetNotes - record meetings, transcribe them and summarize them."""
    if ctx.invoked_subcommand == "init-config":
        return
    try:
        config = MeetNotesConfig(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))
    setup_logging(config, log_level)
    ctx.obj = config


@cli.command()
@click.option("--title", help="Meeting title (the summary may replace it)")
@click.option("--duration", type=float, help="Stop automatically after this many seconds")
@click.pass_obj
def record(config: MeetNotesConfig, title: str, duration: float) -> None:
    """Record a meeting with a live transcript, then transcribe and summarize it."""
    recorder = RecordingSession.from_config(config)
    screen = RecordingScreen(recorder, console=console, duration=duration)
    try:
        session_id = screen.run(title=title)
    except MeetNotesError as e:
        raise click.ClickException(str(e))
    _print_outcome(recorder.store, session_id)


@cli.command()
@click.option("--yes", "assume_yes", is_flag=True, help="Record every detected meeting without asking")
@click.pass_obj
def watch(config: MeetNotesConfig, assume_yes: bool) -> None:
    """Watch for Zoom meetings and record them until interrupted."""
    recorder = RecordingSession.from_config(config)
    detector = MeetingDetector.from_config(config)

    def confirm(event) -> bool:
        if assume_yes:
            return True
        return click.confirm(f"Meeting detected: {event.title}. Record it?", default=True)

    auto = AutoRecorder(recorder, confirm=confirm)
    auto.attach()
    detector.start()
    console.print("Watching for meetings. Press Ctrl+C to quit.")
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        console.print("\nStopping...")
    finally:
        detector.stop()
        auto.detach()
        recorder.stop()
        recorder.wait_for_processing()

    for session_id in auto.session_ids:
        _print_outcome(recorder.store, session_id)


@cli.command("import")
@click.argument("audio_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--title", help="Meeting title (the summary may replace it)")
@click.pass_obj
def import_audio(config: MeetNotesConfig, audio_file: str, title: str) -> None:
    """Import a browser recording (webm) as a new meeting."""
    recorder = RecordingSession.from_config(config, permission_check=lambda: None)

    def read_chunks():
        with open(audio_file, 'rb') as f:
            while True:
                chunk = f.read(INGEST_CHUNK_BYTES)
                if not chunk:
                    return
                yield chunk

    session = recorder.import_audio(read_chunks(), title=title or Path(audio_file).stem)
    _print_outcome(recorder.store, session.session_id)


@cli.command()
@click.argument("audio_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def transcribe(config: MeetNotesConfig, audio_file: str) -> None:
    """Transcribe an audio file and print the timestamped transcript."""
    backend = create_speech_backend(config)
    if backend is None:
        raise click.ClickException("speech service not configured")
    engine = FinalTranscriptionEngine.from_config(config, backend, MediaTools.from_config(config))
    try:
        transcript = engine.transcribe_final(Path(audio_file))
    except MeetNotesError as e:
        raise click.ClickException(str(e))
    click.echo(transcript.text, nl=False)
    if transcript.skipped_chunks:
        console.print(f"Skipped chunks: {transcript.skipped_chunks}", style="yellow")


@cli.command()
@click.argument("meeting_id")
@click.pass_obj
def summarize(config: MeetNotesConfig, meeting_id: str) -> None:
    """Regenerate the summary of a stored meeting."""
    store = MeetingStore(config.get_data_directory())
    record = store.get_meeting(meeting_id)
    if record is None:
        raise click.ClickException(f"Meeting not found: {meeting_id}")
    try:
        summary = SummarizationEngine.from_config(config).generate_summary(record.transcript or "")
    except MeetNotesError as e:
        raise click.ClickException(str(e))
    store.update_meeting(meeting_id, summary=summary.to_dict(), title=summary.title)
    click.echo(json.dumps(summary.to_dict(), indent=2))


@cli.command("list")
@click.pass_obj
def list_meetings(config: MeetNotesConfig) -> None:
    """List stored meetings, newest first."""
    store = MeetingStore(config.get_data_directory())
    table = Table(show_header=True, header_style="bold magenta")
    for column in ("ID", "Title", "Date", "Duration", "Status"):
        table.add_column(column)
    for record in store.list_meetings():
        duration = f"{record.duration:.0f}s" if record.duration is not None else "-"
        table.add_row(record.id, record.title, record.date[:16], duration, record.status)
    console.print(table)


@cli.command()
@click.argument("meeting_id")
@click.pass_obj
def show(config: MeetNotesConfig, meeting_id: str) -> None:
    """Print a stored meeting's transcript and summary."""
    store = MeetingStore(config.get_data_directory())
    record = store.get_meeting(meeting_id)
    if record is None:
        raise click.ClickException(f"Meeting not found: {meeting_id}")
    _print_outcome(store, meeting_id)
    if record.summary:
        click.echo(json.dumps(record.summary, indent=2))


@cli.command("init-config")
@click.argument("path", default=CONFIG_FILENAME, type=click.Path(dir_okay=False))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config(path: str, force: bool) -> None:
    """Write a configuration file with every default spelled out."""
    if Path(path).exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    target = write_default_config(path)
    click.echo(f"Wrote {target}")


def main() -> None:
    """Main entry point for MeetNotes application."""
    cli()


if __name__ == "__main__":
    main()
