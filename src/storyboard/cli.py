"""
Command-line interface for the subtitle storyboard pipeline.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path

import httpx

from .config import Settings
from .credentials import CredentialPool, parse_bearer_tokens
from .errors import PolicyError, StoryboardError
from .imagegen import make_image_generator
from .jobs import ImageJobDispatcher
from .merge import build_rules, parse_merge_words
from .models import AspectRatio, ImageJob
from .pipeline import (
    ImageStage,
    MergeStage,
    PromptStage,
    read_prompts,
    run_pipeline,
    write_images,
    write_prompts,
)
from .prompts import make_prompt_fixer

logger = logging.getLogger("storyboard")

# Optional OpenAI SDK
try:
    from openai import AsyncOpenAI
except ImportError:
    AsyncOpenAI = None


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    ap = argparse.ArgumentParser(description="Subtitle storyboard pipeline (merge -> prompts -> images)")

    # Phase control
    ap.add_argument(
        "--stage",
        choices=["merge", "prompts", "images", "auto"],
        default="auto",
        help="merge: merge short lines; prompts: SRT -> image prompts; images: prompts -> images; auto: all three",
    )

    # IO
    ap.add_argument("--subtitles", help="Input SRT (merge/prompts/auto stages)")
    ap.add_argument("--content", help="Content document with numbered sections, used to derive merge bounds")
    ap.add_argument("--prompts-file", help="Prompts for the images stage, one per line (default: <workdir>/prompts.txt)")
    ap.add_argument("--workdir", default=".work")

    # Merge rules
    ap.add_argument(
        "--bounds",
        default=None,
        help="Comma separated last subtitle line of each section, e.g. 12,30,55 (skips content analysis)",
    )
    ap.add_argument("--merge-words", default="5", help="Semicolon separated word thresholds per section, e.g. 5;3;8")
    ap.add_argument("--parts", type=int, default=None, help="Number of sections (extra sections span 20 lines)")

    # Generation
    ap.add_argument("--model", default=None, help="GPT model for analysis, prompts and repair")
    ap.add_argument("--style", default=None, help="Style conditions applied to every image prompt")
    ap.add_argument("--chunk-size", type=int, default=None, help="Subtitle lines per prompt request")
    ap.add_argument("--concurrency", type=int, default=None, help="Prompt requests per wave")
    ap.add_argument("--tokens-file", default=None, help="File with bearer tokens (default: STORYBOARD_IMAGE_TOKENS)")
    ap.add_argument(
        "--aspect-ratio",
        choices=[a.value for a in AspectRatio],
        default=AspectRatio.LANDSCAPE.value,
    )
    ap.add_argument("--retry-failed", action="store_true", help="Retry failed images once with random valid tokens")
    ap.add_argument("--repair-failed", action="store_true", help="Rewrite failed prompts with GPT, then retry")

    # Logging
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    return ap.parse_args(argv)


def parse_bounds(raw: str) -> list[int]:
    bounds: list[int] = []
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            bounds.append(int(token))
        except ValueError as e:
            raise PolicyError(f"Invalid section bound: {token!r}") from e
    return bounds


def _read_text(path: str | None, what: str) -> str:
    if not path:
        raise PolicyError(f"--{what} is required for this stage")
    if not os.path.exists(path):
        raise PolicyError(f"{what} file not found: {path}")
    with open(path, encoding="utf-8") as f:
        return f.read()


def _write_jobs_manifest(jobs: list[ImageJob], path: str) -> None:
    manifest = [{k: v for k, v in asdict(j).items() if k != "image_data"} for j in jobs]
    with open(path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, ensure_ascii=False, indent=2, default=str)
    logger.info(f"Saved job manifest -> {path}")


def _make_client(settings: Settings) -> AsyncOpenAI:
    if not AsyncOpenAI:
        raise PolicyError("openai package not installed. Install with: pip install openai")
    if not settings.openai_api_key:
        raise PolicyError("OPENAI_API_KEY is not set. Put it in .env or environment.")
    return AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.request_timeout)


def _load_tokens(args: argparse.Namespace, settings: Settings) -> CredentialPool:
    raw = settings.image_tokens
    if args.tokens_file:
        raw = _read_text(args.tokens_file, "tokens-file")
    tokens = parse_bearer_tokens(raw)
    if not tokens:
        raise PolicyError("No bearer tokens found (use --tokens-file or STORYBOARD_IMAGE_TOKENS)")
    logger.info(f"Loaded {len(tokens)} bearer token(s)")
    return CredentialPool(tokens)


def _build_merge_stage(args: argparse.Namespace, settings: Settings, client) -> MergeStage:
    merge_words = parse_merge_words(args.merge_words)
    if args.bounds:
        rules = build_rules(parse_bounds(args.bounds), merge_words, args.parts)
        return MergeStage(rules)
    return MergeStage(
        client=client,
        content_text=_read_text(args.content, "content"),
        merge_words=merge_words,
        model=settings.text_model,
    )


async def _follow_up(dispatcher: ImageJobDispatcher, args: argparse.Namespace) -> None:
    if args.repair_failed and dispatcher.failed_jobs():
        await dispatcher.repair_failed()
    if args.retry_failed and dispatcher.failed_jobs():
        await dispatcher.retry_failed()


async def main_async(argv: list[str] | None = None) -> int:
    """Main async CLI entry point."""
    args = parse_args(argv)
    setup_logging(args.verbose)
    settings = Settings.from_env()
    if args.model:
        settings.text_model = args.model
    if args.style:
        settings.style = args.style
    if args.chunk_size:
        settings.chunk_size = args.chunk_size
    if args.concurrency:
        settings.concurrency = args.concurrency

    Path(args.workdir).mkdir(parents=True, exist_ok=True)
    merged_path = os.path.join(args.workdir, "merged.srt")
    prompts_path = args.prompts_file or os.path.join(args.workdir, "prompts.txt")
    images_dir = os.path.join(args.workdir, "images")

    need_openai = args.stage in ("prompts", "auto") or args.repair_failed or (
        args.stage == "merge" and not args.bounds
    )
    client = _make_client(settings) if need_openai else None

    if args.stage == "merge":
        merged = await _build_merge_stage(args, settings, client).run(_read_text(args.subtitles, "subtitles"))
        Path(merged_path).write_text(merged, encoding="utf-8")
        logger.info(f"Saved merged SRT -> {merged_path}")
        return 0

    prompt_stage = PromptStage(
        client,
        settings.style,
        settings.text_model,
        chunk_size=settings.chunk_size,
        concurrency=settings.concurrency,
    )

    if args.stage == "prompts":
        prompts = await prompt_stage.run(_read_text(args.subtitles, "subtitles"))
        write_prompts(prompts, prompts_path)
        return 0

    pool = _load_tokens(args, settings)
    async with httpx.AsyncClient(follow_redirects=True, timeout=settings.request_timeout) as http:
        dispatcher = ImageJobDispatcher(
            pool,
            make_image_generator(http, settings.image_url),
            sanitize=make_prompt_fixer(client, settings.text_model) if client else None,
            aspect_ratio=AspectRatio(args.aspect_ratio),
        )
        image_stage = ImageStage(dispatcher)

        if args.stage == "images":
            if not os.path.exists(prompts_path):
                raise PolicyError(f"Prompts file not found: {prompts_path}")
            await image_stage.run(read_prompts(prompts_path))
        else:
            report = await run_pipeline(
                _build_merge_stage(args, settings, client),
                prompt_stage,
                image_stage,
                _read_text(args.subtitles, "subtitles"),
            )
            if report.merged_text is not None:
                Path(merged_path).write_text(report.merged_text, encoding="utf-8")
            if report.prompts:
                write_prompts(report.prompts, prompts_path)
            if not report.ok:
                logger.error(f"Error at step {report.failed_stage}: {report.error}")
                return 1

        await _follow_up(dispatcher, args)

    write_images(dispatcher.jobs, images_dir)
    _write_jobs_manifest(dispatcher.jobs, os.path.join(args.workdir, "jobs.json"))
    failed = dispatcher.failed_jobs()
    logger.info(
        f"Done: {len(dispatcher.successful_jobs())} images, {len(failed)} failed, "
        f"{len(pool.valid_tokens())}/{len(pool)} tokens still valid"
    )
    return 1 if failed else 0


def main() -> None:
    """Main CLI entry point."""
    try:
        code = asyncio.run(main_async())
    except StoryboardError as e:
        logger.error(str(e))
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
