from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from mediaflow.services.speech import SpeechSegment


class TimedText(Protocol):
    start_time: float
    end_time: float
    text: str


def _format_srt_timestamp(seconds: float) -> str:
    """Format seconds to SRT timestamp format (HH:MM:SS,mmm)."""
    total_ms = int(round(max(0.0, seconds) * 1000))
    hrs, rem = divmod(total_ms, 3_600_000)
    mins, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hrs:02}:{mins:02}:{secs:02},{millis:03}"


def build_srt(segments: Iterable[TimedText]) -> str:
    """Render segments as sequential SRT blocks in the order given."""
    lines: List[str] = []
    for idx, seg in enumerate(segments, 1):
        lines.append(str(idx))
        lines.append(f"{_format_srt_timestamp(seg.start_time)} --> {_format_srt_timestamp(seg.end_time)}")
        lines.append(seg.text.strip())
        lines.append("")
    return "\n".join(lines) + ("\n" if lines else "")


def write_srt(segments: Iterable[TimedText], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_srt(segments), encoding="utf-8")
    return path


def count_words(texts: Iterable[str]) -> int:
    return sum(len(text.split()) for text in texts)


def average_confidence(segments: Iterable[SpeechSegment]) -> Optional[float]:
    scores = [seg.confidence for seg in segments if seg.confidence is not None]
    if not scores:
        return None
    return sum(scores) / len(scores)


def chunk_ranges(duration: float, chunk_size: float = 600.0) -> List[tuple]:
    """Split ``duration`` seconds into (start, length) windows of at most ``chunk_size``."""
    ranges = []
    start = 0.0
    while start < duration:
        end = min(start + chunk_size, duration)
        ranges.append((start, end - start))
        start = end
    return ranges
