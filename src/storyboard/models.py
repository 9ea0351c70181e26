"""
Data models for the subtitle storyboard pipeline.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class SubtitleBlock:
    """A single SRT block. ``index`` is the number found in the source text."""

    index: int
    start_time: str  # HH:MM:SS,mmm
    end_time: str  # HH:MM:SS,mmm
    text: str


@dataclass(frozen=True)
class MergeRule:
    """Merge policy for one section of subtitle lines."""

    process_up_to_line: int
    merge_lines_with_fewer_than: int


@dataclass
class SectionBoundary:
    """Last subtitle line of a numbered content section."""

    section: int
    subtitle_line: int


@dataclass
class PromptResult:
    """An image prompt generated for one subtitle line."""

    subtitle_index: int
    subtitle_text: str
    image_prompt: str


class JobState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class CredentialHealth(str, Enum):
    VALID = "valid"
    INVALID = "invalid"


class AspectRatio(str, Enum):
    """Image aspect ratios accepted by the image service."""

    SQUARE = "1:1"
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"


@dataclass
class ImageJob:
    """One image generation job per prompt."""

    id: int
    prompt: str
    state: JobState = JobState.PENDING
    error: str | None = None
    image_data: str | None = None  # base64
