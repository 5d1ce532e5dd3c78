"""Speech-to-text via whisper.cpp, plus transcript cleanup."""

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import mutagen

from config import settings
from src.exceptions import TranscriptionError

logger = logging.getLogger(__name__)

# Markers whisper.cpp emits for non-speech segments; other bracketed text is speech
PLACEHOLDER_PATTERN = re.compile(
    r"\[\s*(?:BLANK_AUDIO|music(?: playing)?|silence|inaudible|applause|laughter|noise|no speech)\s*\]"
    r"|\((?:inaudible|music|silence|applause|laughter|no speech)\)",
    re.IGNORECASE,
)
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


@dataclass
class Transcription:
    """Raw engine output plus the source audio's duration."""

    text: str
    duration_seconds: int


def _ffmpeg_path() -> str:
    """Resolve ffmpeg from the system PATH."""
    return shutil.which("ffmpeg") or "ffmpeg"


def audio_duration(path: Path) -> int:
    """Return the duration of an audio file in whole seconds, or 0 if unknown."""
    try:
        audio = mutagen.File(str(path))
    except Exception as e:
        logger.warning("Could not read audio metadata for %s: %s", path.name, e)
        return 0
    if audio is None or audio.info is None:
        return 0
    return int(audio.info.length)


def clean_transcript(raw: str) -> str:
    """Strip control characters, newlines and placeholder markers."""
    text = raw.replace("\r", " ").replace("\n", " ")
    text = CONTROL_CHARS.sub("", text)
    text = PLACEHOLDER_PATTERN.sub(" ", text)
    return re.sub(r"\s{2,}", " ", text).strip()


def split_sentences(text: str) -> list[str]:
    """Resegment a cleaned transcript into sentences for long-form display."""
    return [s.strip() for s in SENTENCE_BOUNDARY.split(text) if s.strip()]


class WhisperTranscriber:
    """Run whisper.cpp against a staged recording.

    whisper.cpp only reads 16 kHz mono WAV, so the recording is converted
    with ffmpeg first. The engine writes a sidecar ``<stem>.txt`` next to
    the input; everything stays inside the item's staging slot.
    """

    def __init__(
        self,
        cli_path: str | None = None,
        model_path: str | None = None,
        use_gpu: bool | None = None,
        threads: int | None = None,
        timeout: int | None = None,
    ):
        self.cli_path = cli_path or settings.whisper_cli_path
        self.model_path = model_path or settings.whisper_model_path
        self.use_gpu = settings.whisper_use_gpu if use_gpu is None else use_gpu
        self.threads = threads or settings.whisper_threads
        self.timeout = timeout or settings.whisper_timeout_seconds

    def _convert_to_wav(self, path: Path) -> Path:
        wav_path = path.with_name(f"{path.stem}.16k.wav")
        cmd = [
            _ffmpeg_path(), "-i", str(path),
            "-ar", "16000", "-ac", "1", "-c:a", "pcm_s16le",
            "-y", str(wav_path),
        ]
        logger.info("Converting %s to 16 kHz WAV via ffmpeg", path.name)
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            wav_path.unlink(missing_ok=True)
            raise TranscriptionError(
                f"ffmpeg conversion failed (exit {result.returncode}): {result.stderr[:500]}"
            )
        return wav_path

    def build_command(self, wav_path: Path, output_stem: Path) -> list[str]:
        cmd = [
            self.cli_path,
            "-m", self.model_path,
            "-f", str(wav_path),
            "-t", str(self.threads),
            "-otxt",
            "-of", str(output_stem),
        ]
        if not self.use_gpu:
            cmd.append("-ng")
        return cmd

    def transcribe(self, audio_path: Path) -> Transcription:
        """Transcribe a local recording.

        Raises:
            TranscriptionError: If conversion or the engine fails.
        """
        if not audio_path.exists():
            raise TranscriptionError(f"Audio file not found: {audio_path}")

        try:
            wav_path = self._convert_to_wav(audio_path)
            output_stem = audio_path.with_suffix("")
            cmd = self.build_command(wav_path, output_stem)
            logger.info("Running whisper.cpp on %s (gpu=%s)", audio_path.name, self.use_gpu)
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            if result.returncode != 0:
                raise TranscriptionError(
                    f"whisper.cpp failed (exit {result.returncode}): {result.stderr[:500]}"
                )

            sidecar = output_stem.with_suffix(".txt")
            if not sidecar.exists():
                raise TranscriptionError(f"whisper.cpp wrote no transcript at {sidecar}")
            text = sidecar.read_text(encoding="utf-8", errors="replace")

            duration = audio_duration(audio_path) or audio_duration(wav_path)
            logger.info("Transcribed %s: %d chars, %ds of audio", audio_path.name, len(text), duration)
            return Transcription(text=text, duration_seconds=duration)
        except TranscriptionError:
            raise
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {e}") from e
