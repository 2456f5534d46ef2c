import re
import shlex
import subprocess
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import ffmpeg
import structlog

from mediaflow.core.errors import MediaProcessingError, TransientIOError

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[float, str], None]

_TIMESTAMP_PATTERN = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{1,2}(?:\.\d+)?)$")


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def parse_offset(value: float | int | str) -> float:
    """Accept seconds or an HH:MM:SS(.fff) timestamp and return seconds."""
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    text = str(value).strip()
    match = _TIMESTAMP_PATTERN.match(text)
    if match:
        hours = int(match.group(1) or 0)
        minutes = int(match.group(2))
        seconds = float(match.group(3))
        return hours * 3600 + minutes * 60 + seconds
    try:
        return max(0.0, float(text))
    except ValueError:
        raise MediaProcessingError(f"Invalid time offset: {value!r}") from None


def _parse_rate(rate: Optional[str]) -> Optional[float]:
    # e.g. "30000/1001"
    if not rate:
        return None
    try:
        if "/" in rate:
            num, denom = rate.split("/")
            if float(denom) == 0:
                return None
            return round(float(num) / float(denom), 3)
        return float(rate)
    except ValueError:
        return None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def run_cmd(cmd: List[str]) -> Tuple[int, str, str]:
    """Run a command and return exit code, stdout, stderr."""
    logger.info("exec.cmd", cmd=" ".join(shlex.quote(c) for c in cmd))
    try:
        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    except FileNotFoundError as exc:
        raise MediaProcessingError(f"Executable not found: {cmd[0]}") from exc
    except OSError as exc:
        raise TransientIOError(f"Could not start {cmd[0]}: {exc}") from exc
    out, err = proc.communicate()
    return proc.returncode, out, err


def run_cmd_with_progress(
    cmd: List[str],
    duration_sec: float,
    progress_callback: Optional[ProgressCallback] = None,
) -> Tuple[int, str, str]:
    """
    Run an ffmpeg command and report progress parsed from ``-progress pipe:1``.

    Args:
        cmd: Command list (must include -progress pipe:1)
        duration_sec: Expected output duration in seconds
        progress_callback: Callback(progress_0_to_1, message)

    Returns:
        (exit_code, stdout, stderr)
    """
    logger.info("exec.cmd_with_progress", cmd=" ".join(shlex.quote(c) for c in cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError as exc:
        raise MediaProcessingError(f"Executable not found: {cmd[0]}") from exc
    except OSError as exc:
        raise TransientIOError(f"Could not start {cmd[0]}: {exc}") from exc

    stderr_lines: List[str] = []
    stdout_lines: List[str] = []

    def read_stderr() -> None:
        for line in proc.stderr:
            stderr_lines.append(line)

    stderr_thread = threading.Thread(target=read_stderr, daemon=True)
    stderr_thread.start()

    time_pattern = re.compile(r"out_time_ms=(\d+)")
    last_progress = 0.0

    for line in proc.stdout:
        stdout_lines.append(line)
        match = time_pattern.search(line)
        if match and duration_sec > 0:
            # out_time_ms is reported in microseconds
            time_sec = int(match.group(1)) / 1_000_000
            progress = min(1.0, time_sec / duration_sec)
            if progress - last_progress >= 0.05 or progress >= 0.99:
                last_progress = progress
                if progress_callback:
                    progress_callback(progress, f"Encoding: {progress * 100:.0f}% ({time_sec:.1f}s / {duration_sec:.1f}s)")

    proc.wait()
    stderr_thread.join(timeout=1)
    return proc.returncode, "".join(stdout_lines), "".join(stderr_lines)


def _stderr_tail(stderr: Optional[bytes | str], limit: int = 2000) -> str:
    if not stderr:
        return ""
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    return stderr[-limit:].strip()


class FFmpegTools:
    """Thin wrapper around the ffmpeg and ffprobe binaries."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", ffprobe_bin: str = "ffprobe") -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin

    def probe(self, path: str) -> Dict[str, Any]:
        source = Path(path)
        if not source.is_file():
            raise MediaProcessingError(f"Media file not found: {path}")
        try:
            return ffmpeg.probe(str(source), cmd=self.ffprobe_bin)
        except ffmpeg.Error as exc:
            raise MediaProcessingError(
                f"ffprobe could not read {source.name}", stderr=_stderr_tail(exc.stderr)
            ) from exc
        except FileNotFoundError as exc:
            raise MediaProcessingError(f"Executable not found: {self.ffprobe_bin}") from exc

    def probe_metadata(self, path: str) -> Dict[str, Any]:
        """Summarise ffprobe output into the fields stored on an asset."""
        info = self.probe(path)
        fmt = info.get("format") or {}
        streams = info.get("streams") or []
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
        if video is None:
            raise MediaProcessingError(f"No video stream found in {Path(path).name}")

        try:
            duration = float(fmt.get("duration") or video.get("duration") or 0.0)
        except (TypeError, ValueError):
            duration = 0.0
        bit_rate = _as_int(fmt.get("bit_rate"))
        width, height = _as_int(video.get("width")), _as_int(video.get("height"))
        return {
            "duration": duration,
            "size": _as_int(fmt.get("size")),
            "bitrate": round(bit_rate / 1000) if bit_rate else None,
            "format": fmt.get("format_name"),
            "resolution": f"{width}x{height}" if width and height else None,
            "video_codec": video.get("codec_name"),
            "audio_codec": audio.get("codec_name") if audio else None,
            "frame_rate": _parse_rate(video.get("r_frame_rate")),
            "audio_channels": _as_int(audio.get("channels")) if audio else None,
            "audio_sample_rate": _as_int(audio.get("sample_rate")) if audio else None,
        }

    def encode_rendition(
        self,
        source_path: str,
        output_path: str,
        *,
        width: int,
        height: int,
        video_bitrate_kbps: int,
        crf: int,
        preset: str,
        duration_sec: float,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        stream = (
            ffmpeg.input(source_path)
            .output(
                output_path,
                vcodec="libx264",
                preset=preset,
                crf=crf,
                vf=f"scale={width}:{height}",
                video_bitrate=f"{video_bitrate_kbps}k",
                acodec="aac",
                audio_bitrate="128k",
                movflags="+faststart",
            )
            .global_args("-progress", "pipe:1", "-nostats")
            .overwrite_output()
        )
        cmd = stream.compile(cmd=self.ffmpeg_bin)
        code, _, err = run_cmd_with_progress(cmd, duration_sec, progress_callback)
        if code != 0:
            logger.error("ffmpeg.encode_failed", output_path=output_path, error=_stderr_tail(err, 500))
            raise MediaProcessingError(
                f"ffmpeg exited with code {code} while encoding {width}x{height}",
                stderr=_stderr_tail(err),
            )
        if not Path(output_path).exists():
            raise MediaProcessingError(f"ffmpeg did not produce {output_path}")

    def extract_audio(
        self,
        source_path: str,
        output_path: str,
        start: float = 0.0,
        duration: Optional[float] = None,
    ) -> str:
        """Mono 16 kHz PCM WAV, the input format speech models expect."""
        input_kwargs: Dict[str, Any] = {}
        if start:
            input_kwargs["ss"] = start
        if duration:
            input_kwargs["t"] = duration
        stream = (
            ffmpeg.input(source_path, **input_kwargs)
            .output(output_path, format="wav", acodec="pcm_s16le", ac=1, ar=16000, vn=None)
            .overwrite_output()
        )
        self._run(stream, "extract_audio", output_path)
        return output_path

    def render_thumbnail(
        self,
        source_path: str,
        output_path: str,
        timestamp: float,
        width: int = 1280,
        height: int = 720,
    ) -> str:
        stream = (
            ffmpeg.input(source_path, ss=timestamp)
            .output(output_path, vframes=1, vf=f"scale={width}:{height}", **{"q:v": 2})
            .overwrite_output()
        )
        self._run(stream, "thumbnail", output_path)
        return output_path

    def _run(self, stream: Any, operation: str, output_path: str) -> None:
        try:
            stream.run(cmd=self.ffmpeg_bin, capture_stdout=True, capture_stderr=True)
        except ffmpeg.Error as exc:
            logger.error(f"ffmpeg.{operation}_failed", output_path=output_path, error=_stderr_tail(exc.stderr, 500))
            raise MediaProcessingError(f"ffmpeg {operation} failed", stderr=_stderr_tail(exc.stderr)) from exc
        except FileNotFoundError as exc:
            raise MediaProcessingError(f"Executable not found: {self.ffmpeg_bin}") from exc
        if not Path(output_path).exists():
            raise MediaProcessingError(f"ffmpeg {operation} did not produce {output_path}")
