"""Typer CLI entrypoint for voice-shortcut."""

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path

import typer

from voice_shortcut.audio_chunker import AudioChunker
from voice_shortcut.config import Config, ConfigError, load_config
from voice_shortcut.credentials import EnvCredentialProvider
from voice_shortcut.errors import SpeechError, describe
from voice_shortcut.executor import RequestExecutor
from voice_shortcut.gemini import GeminiClient
from voice_shortcut.progress import NullObserver
from voice_shortcut.speech_service import SpeechService
from voice_shortcut.synthesizer import SoundDevicePlayer, write_wav
from voice_shortcut.text_chunker import TextChunker

app = typer.Typer(help="Gemini dictation, prompting and read-aloud from the command line")

logger = logging.getLogger(__name__)

_SECRET_KEYS = ("api_key", "bearer_token")


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger().setLevel(level)


def _load_config(config: Path | None, verbose: bool) -> Config:
    """Load configuration, switching to debug logging when it asks for it."""
    cfg = load_config(config)
    if cfg.general.verbose and not verbose:
        _setup_logging(True)
    return cfg


class LoggingObserver(NullObserver):
    """Logs chunk progress for command-line runs."""

    def __init__(self):
        self.total = 0

    def chunking_started(self, total: int) -> None:
        self.total = total
        logger.info("Processing %d chunk(s)", total)

    def chunk_completed(self, index: int, text: str) -> None:
        logger.info("Chunk %d/%d done", index + 1, self.total)

    def chunk_failed(self, index: int, error: Exception, will_retry: bool) -> None:
        if will_retry:
            logger.info("Chunk %d/%d failed, retrying: %s", index + 1, self.total, error)
        else:
            logger.warning("Chunk %d/%d failed: %s", index + 1, self.total, error)

    def rate_limit_wait(self, seconds: float) -> None:
        logger.info("Rate limited, waiting %.0fs", seconds)


def _build_service(
    cfg: Config, *, player: SoundDevicePlayer | None = None
) -> tuple[RequestExecutor, SpeechService]:
    """Wire executor, client and service from configuration."""
    credentials = EnvCredentialProvider(
        api_key=cfg.api.api_key, bearer_token=cfg.api.bearer_token
    )
    executor = RequestExecutor(credentials, api=cfg.api, retry=cfg.retry)
    client = GeminiClient(executor, cfg.api, cfg.chunking, tts=cfg.tts)
    service = SpeechService(cfg, client, credentials, player=player)
    return executor, service


def _read_text(text: str | None, file: Path | None) -> str:
    if file is not None:
        return file.read_text(encoding="utf-8")
    if text is None:
        raise typer.BadParameter("Provide TEXT or --file")
    return text


def _report_speech_error(error: SpeechError) -> None:
    label, message = describe(error)
    logger.error("%s: %s", label, message)
    typer.echo(f"{label}: {message}", err=True)
    if error.retry_after is not None:
        typer.echo(f"Retry in {error.retry_after:.0f}s", err=True)


def _masked_config(cfg: Config) -> dict:
    data = asdict(cfg)
    for key in _SECRET_KEYS:
        if data["api"].get(key):
            data["api"][key] = "***"
    data["source"] = str(cfg.source) if cfg.source else None
    return data


@app.command()
def transcribe(
    audio: Path = typer.Argument(..., exists=True, dir_okay=False, help="Audio file"),
    config: Path | None = typer.Option(None, "--config", help="Path to configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Transcribe an audio file, splitting it into chunks when needed."""
    _setup_logging(verbose)
    try:
        cfg = _load_config(config, verbose)
        logger.info("Loaded config from: %s", cfg.source or "defaults")

        async def _run() -> str:
            executor, service = _build_service(cfg)
            try:
                result = await service.transcribe(audio, observer=LoggingObserver())
            finally:
                await executor.aclose()
            if result.partial:
                logger.warning(
                    "%d of %d chunks failed", len(result.failed_chunks), result.chunk_count
                )
            return result.text

        typer.echo(asyncio.run(_run()))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except SpeechError as e:
        _report_speech_error(e)
        raise typer.Exit(1)


@app.command()
def prompt(
    audio: Path | None = typer.Argument(
        None, exists=True, dir_okay=False, help="Audio file with the spoken instruction"
    ),
    text: str | None = typer.Option(None, "--text", "-t", help="Typed instruction instead of audio"),
    selected_text: str | None = typer.Option(
        None, "--selected-text", "-s", help="Text the instruction applies to"
    ),
    config: Path | None = typer.Option(None, "--config", help="Path to configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Apply a spoken (or typed) instruction with Gemini."""
    _setup_logging(verbose)
    if audio is None and text is None:
        typer.echo("Provide an AUDIO file or --text", err=True)
        raise typer.Exit(2)
    try:
        cfg = _load_config(config, verbose)

        async def _run() -> str:
            executor, service = _build_service(cfg)
            try:
                if audio is not None:
                    return await service.prompt(audio, selected_text=selected_text)
                return await service.prompt_text(text, selected_text=selected_text)
            finally:
                await executor.aclose()

        typer.echo(asyncio.run(_run()))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except SpeechError as e:
        _report_speech_error(e)
        raise typer.Exit(1)


@app.command()
def read_aloud(
    text: str | None = typer.Argument(None, help="Text to read"),
    file: Path | None = typer.Option(
        None, "--file", "-f", exists=True, dir_okay=False, help="Read text from file"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write a WAV file instead of playing"
    ),
    config: Path | None = typer.Option(None, "--config", help="Path to configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Synthesize speech for TEXT and play it or write it to a WAV file."""
    _setup_logging(verbose)
    try:
        content = _read_text(text, file)
        cfg = _load_config(config, verbose)

        async def _run() -> None:
            player = None if output else SoundDevicePlayer()
            executor, service = _build_service(cfg, player=player)
            try:
                if output is None:
                    played = await service.speak(content, observer=LoggingObserver())
                    logger.info("Played %d chunk(s)", played)
                    return
                audio = await service.synthesize(content, observer=LoggingObserver())
                write_wav(output, audio.pcm, audio.sample_rate)
                typer.echo(f"Wrote {audio.duration:.1f}s of audio to {output}")
            finally:
                await executor.aclose()
                if player is not None:
                    player.close()

        asyncio.run(_run())
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except SpeechError as e:
        _report_speech_error(e)
        raise typer.Exit(1)


@app.command()
def split_audio(
    audio: Path = typer.Argument(..., exists=True, dir_okay=False, help="Audio file"),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-o", help="Directory for chunk files"
    ),
    max_duration: float | None = typer.Option(
        None, "--max-duration", help="Override maximum chunk duration in seconds"
    ),
    config: Path | None = typer.Option(None, "--config", help="Path to configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON instead of table"),
) -> None:
    """Split an audio file into request-sized WAV chunks."""
    _setup_logging(verbose)
    try:
        cfg = _load_config(config, verbose)
        if output_dir is not None:
            output_dir.mkdir(parents=True, exist_ok=True)
        chunker = AudioChunker(
            max_duration or cfg.chunking.max_chunk_duration,
            cfg.chunking.max_chunk_bytes,
            output_dir or cfg.chunking.temp_dir,
        )
        chunks = chunker.split(audio)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except (SpeechError, ValueError) as e:
        logger.error("Cannot split %s: %s", audio, e)
        raise typer.Exit(1)

    if json_output:
        typer.echo(
            json.dumps(
                [
                    {
                        "index": c.index,
                        "start": c.start,
                        "duration": c.duration,
                        "bytes": c.byte_size,
                        "path": str(c.path),
                    }
                    for c in chunks
                ],
                indent=2,
            )
        )
        return

    typer.echo(f"{len(chunks)} chunk(s):")
    for c in chunks:
        typer.echo(f"  [{c.index}] {c.start:.1f}s-{c.end:.1f}s ({c.byte_size} bytes) {c.path}")


@app.command()
def split_text(
    text: str | None = typer.Argument(None, help="Text to split"),
    file: Path | None = typer.Option(
        None, "--file", "-f", exists=True, dir_okay=False, help="Read text from file"
    ),
    max_length: int | None = typer.Option(
        None, "--max-length", "-n", help="Override maximum chunk length"
    ),
    config: Path | None = typer.Option(None, "--config", help="Path to configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON instead of table"),
) -> None:
    """Split text into speech-sized chunks at sentence boundaries."""
    _setup_logging(verbose)
    try:
        content = _read_text(text, file)
        cfg = _load_config(config, verbose)
        chunker = TextChunker(max_length or cfg.tts.max_text_length)
        chunks = chunker.split(content)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except (SpeechError, ValueError) as e:
        logger.error("Cannot split text: %s", e)
        raise typer.Exit(1)

    if json_output:
        typer.echo(json.dumps(chunks, indent=2, ensure_ascii=False))
        return
    for index, chunk in enumerate(chunks):
        typer.echo(f"[{index}] ({len(chunk)} chars) {chunk}")


@app.command()
def show_config(
    config: Path | None = typer.Option(None, "--config", help="Path to configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON instead of table"),
) -> None:
    """Show the effective configuration with secrets masked."""
    _setup_logging(verbose)
    try:
        cfg = _load_config(config, verbose)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)

    data = _masked_config(cfg)
    if json_output:
        typer.echo(json.dumps(data, indent=2))
        return

    typer.echo(f"Config source: {data.pop('source') or 'defaults'}")
    for section, values in data.items():
        typer.echo(f"[{section}]")
        for key, value in values.items():
            typer.echo(f"  {key} = {value}")


if __name__ == "__main__":
    app()
