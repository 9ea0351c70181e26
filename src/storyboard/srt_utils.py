"""
SRT parsing, formatting, and word counting utilities.
"""

import logging
import re

from .models import SubtitleBlock

logger = logging.getLogger("storyboard")

_BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")
_TIMECODE_RE = re.compile(r"(\d{2}:\d{2}:\d{2}[,.]\d{3}) --> (\d{2}:\d{2}:\d{2}[,.]\d{3})")


def _parse_block(raw: str) -> SubtitleBlock | None:
    lines = raw.strip().split("\n")
    if len(lines) < 3:
        return None
    try:
        index = int(lines[0].strip())
    except ValueError:
        return None
    m = _TIMECODE_RE.search(lines[1])
    if not m:
        return None
    return SubtitleBlock(
        index=index,
        start_time=m.group(1).replace(".", ","),
        end_time=m.group(2).replace(".", ","),
        text="\n".join(lines[2:]),
    )


def parse_srt(content: str) -> list[SubtitleBlock]:
    """Parse SRT text into blocks. Malformed blocks are skipped."""
    raw_blocks = _BLOCK_SPLIT_RE.split(content.strip().replace("\r", ""))
    out: list[SubtitleBlock] = []
    skipped = 0
    for raw in raw_blocks:
        block = _parse_block(raw)
        if block is None:
            if raw.strip():
                skipped += 1
            continue
        out.append(block)
    if skipped:
        logger.debug(f"Skipped {skipped} malformed SRT block(s)")
    return out


def format_srt(blocks: list[SubtitleBlock]) -> str:
    """Format blocks as SRT text with a trailing newline."""
    return "\n\n".join(f"{b.index}\n{b.start_time} --> {b.end_time}\n{b.text}" for b in blocks) + "\n"


def word_count(text: str) -> int:
    return len(text.split())
