"""
Stage orchestration: merge subtitles -> image prompts -> images.

Each stage exposes one ``async run(input)`` that returns the stage output or
raises ``StoryboardError``. ``run_pipeline`` sequences them with plain awaits.
"""

import base64
import binascii
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .errors import PolicyError, StoryboardError
from .jobs import ImageJobDispatcher
from .merge import build_rules, merge_subtitles
from .models import ImageJob, JobState, MergeRule, PromptResult
from .prompts import DEFAULT_MODEL, DEFAULT_STYLE, AsyncOpenAI, analyze_sections, generate_image_prompts
from .srt_utils import parse_srt
from .batching import BATCH_CONCURRENCY, CHUNK_SIZE

logger = logging.getLogger("storyboard")

ProgressCallback = Callable[[float], None]


class MergeStage:
    """Merge subtitle lines with explicit rules, or rules derived from a content document."""

    def __init__(
        self,
        rules: Sequence[MergeRule] | None = None,
        *,
        client: AsyncOpenAI = None,
        content_text: str | None = None,
        merge_words: Sequence[int] = (),
        model: str = DEFAULT_MODEL,
    ) -> None:
        self.rules = list(rules) if rules else None
        self.client = client
        self.content_text = content_text
        self.merge_words = list(merge_words)
        self.model = model

    async def resolve_rules(self, subtitle_text: str) -> list[MergeRule]:
        if self.rules:
            return self.rules
        if not self.content_text:
            raise PolicyError("No merge rules and no content document to derive them from")
        boundaries = await analyze_sections(self.client, self.content_text, subtitle_text, self.model)
        if not boundaries:
            raise PolicyError("Content analysis found no sections")
        return build_rules([b.subtitle_line for b in boundaries], self.merge_words)

    async def run(self, subtitle_text: str) -> str:
        if not subtitle_text.strip():
            raise PolicyError("Subtitle text is empty")
        rules = await self.resolve_rules(subtitle_text)
        return merge_subtitles(subtitle_text, rules)


class PromptStage:
    """Generate one image prompt per subtitle line."""

    def __init__(
        self,
        client: AsyncOpenAI,
        conditions: str = DEFAULT_STYLE,
        model: str = DEFAULT_MODEL,
        *,
        chunk_size: int = CHUNK_SIZE,
        concurrency: int = BATCH_CONCURRENCY,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.client = client
        self.conditions = conditions
        self.model = model
        self.chunk_size = chunk_size
        self.concurrency = concurrency
        self.on_progress = on_progress

    async def run(self, subtitle_text: str) -> list[PromptResult]:
        blocks = parse_srt(subtitle_text)
        if not blocks:
            raise PolicyError("No subtitle lines to generate prompts for")
        return await generate_image_prompts(
            self.client,
            blocks,
            self.conditions,
            self.model,
            chunk_size=self.chunk_size,
            concurrency=self.concurrency,
            on_progress=self.on_progress,
        )


class ImageStage:
    """Generate one image per prompt through an ``ImageJobDispatcher``."""

    def __init__(self, dispatcher: ImageJobDispatcher, on_progress: ProgressCallback | None = None) -> None:
        self.dispatcher = dispatcher
        self.on_progress = on_progress

    async def run(self, prompts: Sequence[str]) -> list[ImageJob]:
        return await self.dispatcher.dispatch(list(prompts), on_progress=self.on_progress)


@dataclass
class PipelineReport:
    merged_text: str | None = None
    prompts: list[PromptResult] = field(default_factory=list)
    jobs: list[ImageJob] = field(default_factory=list)
    failed_stage: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_stage is None


async def run_pipeline(
    merge_stage: MergeStage,
    prompt_stage: PromptStage,
    image_stage: ImageStage,
    subtitle_text: str,
    on_status: Callable[[str], None] | None = None,
) -> PipelineReport:
    """Run all three stages; the first failing stage stops the run and is recorded."""
    report = PipelineReport()

    def status(msg: str) -> None:
        logger.info(msg)
        if on_status:
            on_status(msg)

    stage = 1
    try:
        status("Step 1: merging subtitles...")
        report.merged_text = await merge_stage.run(subtitle_text)

        stage = 2
        status("Step 2: generating prompts...")
        report.prompts = await prompt_stage.run(report.merged_text)
        if not report.prompts:
            raise StoryboardError("No prompts were generated")

        stage = 3
        status("Step 3: generating images...")
        report.jobs = await image_stage.run([p.image_prompt for p in report.prompts])
    except StoryboardError as e:
        report.failed_stage = stage
        report.error = str(e)
        logger.error(f"Step {stage} failed: {e}. Automation stopped.")
        return report

    status("Done.")
    return report


def write_prompts(prompts: Sequence[PromptResult], path: str) -> None:
    """Write prompts as a numbered list."""
    content = "\n\n".join(f"{n}. {p.image_prompt}" for n, p in enumerate(prompts, 1))
    Path(path).write_text(content + "\n", encoding="utf-8")
    logger.info(f"Saved {len(prompts)} prompts -> {path}")


def read_prompts(path: str) -> list[str]:
    """Read one prompt per non-empty line, dropping a leading ``N.`` number."""
    prompts: list[str] = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        head, sep, rest = line.partition(". ")
        if sep and head.isdigit():
            line = rest.strip()
        prompts.append(line)
    return prompts


def write_images(jobs: Sequence[ImageJob], outdir: str) -> list[str]:
    """Write successful images as 001.png, 002.png, ... and return their paths."""
    Path(outdir).mkdir(parents=True, exist_ok=True)
    paths: list[str] = []
    for job in jobs:
        if job.state is not JobState.SUCCESS or not job.image_data:
            continue
        try:
            data = base64.b64decode(job.image_data)
        except binascii.Error as e:
            logger.warning(f"Job {job.id}: image data is not valid base64, skipping: {e}")
            continue
        path = Path(outdir) / f"{job.id + 1:03d}.png"
        path.write_bytes(data)
        paths.append(str(path))
    logger.info(f"Saved {len(paths)} images -> {outdir}")
    return paths
