"""
GPT-backed text generation: section analysis, image prompts, prompt repair.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .batching import BATCH_CONCURRENCY, CHUNK_SIZE, dispatch_chunks
from .errors import ContractError, GenerationError, PolicyError
from .models import PromptResult, SectionBoundary, SubtitleBlock
from .srt_utils import format_srt

logger = logging.getLogger("storyboard")

# Optional OpenAI SDK
try:
    from openai import AsyncOpenAI
except ImportError:
    AsyncOpenAI = None

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_STYLE = "cinematic, 4k, hyper-realistic, detailed, professional color grading, soft light"

ANALYSIS_SYSTEM = (
    "You align a content document with its subtitle file. The content document is split into "
    "numbered sections (\"1.\", \"2.\", ...). Subtitle lines are numbered from 1 by their SRT index "
    "and may contain errors or omissions. For EACH numbered section find the LAST subtitle line "
    "that belongs to it, using the meaning of the text even when wording differs. "
    'Return ONLY a JSON object {"items": [{"section": <int>, "subtitleLine": <int>}, ...]}.'
)

PROMPT_SYSTEM = (
    "You are a professional prompt engineer for text-to-image models. Turn each subtitle line "
    "into a detailed, vivid image prompt IN ENGLISH describing subject, action, setting, lighting "
    "and art style, keeping the core meaning of the line and applying the user's style conditions. "
    'Return ONLY a JSON object {"items": [{"subtitleIndex": <int>, "subtitleText": <str>, '
    '"imagePrompt": <str>}, ...]} with one item per subtitle line.'
)

FIX_SYSTEM = (
    "You rewrite image prompts that were rejected by a safety filter. Rewrite the prompt so it is "
    "safe and compliant while keeping as much of the artistic intent as possible. "
    "Reply with the rewritten prompt ONLY, without comments, preamble or explanation."
)


def _require_client(client: AsyncOpenAI) -> None:
    if client is None:
        raise PolicyError("OpenAI client is not initialized (missing OPENAI_API_KEY)")


def _load_json(content: str) -> Any:
    """Parse model output as JSON, tolerating code fences and surrounding prose."""
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[4:]
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        for open_ch, close_ch in (("[", "]"), ("{", "}")):
            start = text.find(open_ch)
            end = text.rfind(close_ch)
            if start != -1 and end > start:
                try:
                    return json.loads(text[start : end + 1])
                except json.JSONDecodeError:
                    continue
    raise ContractError("Model did not return valid JSON")


def _items(data: Any) -> list:
    """Accept a bare array or an object wrapping exactly one array."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        arrays = [v for v in data.values() if isinstance(v, list)]
        if len(arrays) == 1:
            return arrays[0]
    raise ContractError(f"Expected a JSON array of items, got {type(data).__name__}")


def parse_prompt_results(content: str) -> list[PromptResult]:
    """Validate a prompt generation response."""
    out: list[PromptResult] = []
    for item in _items(_load_json(content)):
        if not isinstance(item, dict):
            raise ContractError("Prompt item is not an object")
        index = item.get("subtitleIndex")
        prompt = item.get("imagePrompt")
        if not isinstance(index, int) or isinstance(index, bool) or not isinstance(prompt, str):
            raise ContractError(f"Malformed prompt item: {item!r}")
        out.append(
            PromptResult(
                subtitle_index=index,
                subtitle_text=str(item.get("subtitleText", "")),
                image_prompt=prompt.strip(),
            )
        )
    return out


def check_chunk_coverage(results: list[PromptResult], chunk: list[SubtitleBlock]) -> None:
    """Reject items for lines outside the chunk and repeated lines."""
    expected = {b.index for b in chunk}
    seen: set[int] = set()
    for r in results:
        if r.subtitle_index not in expected:
            raise ContractError(f"Prompt for unknown subtitle line {r.subtitle_index}")
        if r.subtitle_index in seen:
            raise ContractError(f"Duplicate prompt for subtitle line {r.subtitle_index}")
        seen.add(r.subtitle_index)


def parse_section_boundaries(content: str) -> list[SectionBoundary]:
    """Validate a section analysis response."""
    out: list[SectionBoundary] = []
    for item in _items(_load_json(content)):
        try:
            out.append(SectionBoundary(section=int(item["section"]), subtitle_line=int(item["subtitleLine"])))
        except (KeyError, TypeError, ValueError) as e:
            raise ContractError(f"Malformed section item: {item!r}") from e
    return out


async def _complete(client: AsyncOpenAI, model: str, system: str, user: str, *, temperature: float, json_mode: bool) -> str:
    kwargs: dict[str, Any] = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    chat = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        temperature=temperature,
        **kwargs,
    )
    return chat.choices[0].message.content or ""


async def analyze_sections(
    client: AsyncOpenAI,
    content_text: str,
    subtitle_text: str,
    model: str = DEFAULT_MODEL,
) -> list[SectionBoundary]:
    """
    Find the last subtitle line of every numbered section of a content document.

    Args:
        client: AsyncOpenAI client instance
        content_text: Document split into numbered sections
        subtitle_text: Matching SRT text
        model: GPT model to use

    Returns:
        One boundary per section, in section order
    """
    _require_client(client)
    user = (
        "--- CONTENT START ---\n"
        f"{content_text}\n"
        "--- CONTENT END ---\n\n"
        "--- SUBTITLES START ---\n"
        f"{subtitle_text}\n"
        "--- SUBTITLES END ---"
    )
    logger.info(f"Analyzing content sections using {model}...")
    try:
        content = await _complete(client, model, ANALYSIS_SYSTEM, user, temperature=0.2, json_mode=True)
        boundaries = parse_section_boundaries(content)
    except Exception as e:
        logger.error(f"Content analysis failed: {e}")
        raise GenerationError(f"Content analysis failed: {e}") from e
    boundaries.sort(key=lambda b: b.section)
    logger.info(f"Found {len(boundaries)} sections")
    return boundaries


async def generate_chunk_prompts(
    client: AsyncOpenAI,
    chunk: list[SubtitleBlock],
    conditions: str,
    model: str = DEFAULT_MODEL,
) -> list[PromptResult]:
    """Generate image prompts for one chunk of subtitle blocks."""
    _require_client(client)
    user = (
        f'Style conditions from the user: "{conditions}"\n\n'
        "Subtitle lines (SRT, part of a larger file):\n"
        "--- START ---\n"
        f"{format_srt(chunk)}"
        "--- END ---"
    )
    content = await _complete(client, model, PROMPT_SYSTEM, user, temperature=0.7, json_mode=True)
    results = parse_prompt_results(content)
    check_chunk_coverage(results, chunk)
    return results


async def generate_image_prompts(
    client: AsyncOpenAI,
    blocks: list[SubtitleBlock],
    conditions: str = DEFAULT_STYLE,
    model: str = DEFAULT_MODEL,
    *,
    chunk_size: int = CHUNK_SIZE,
    concurrency: int = BATCH_CONCURRENCY,
    on_progress: Callable[[float], None] | None = None,
) -> list[PromptResult]:
    """Generate one image prompt per subtitle block, ordered by subtitle index."""
    _require_client(client)
    if not conditions.strip():
        raise PolicyError("Style conditions are empty")

    async def _generate(chunk: list[SubtitleBlock]) -> list[PromptResult]:
        return await generate_chunk_prompts(client, chunk, conditions, model)

    results = await dispatch_chunks(
        blocks,
        _generate,
        chunk_size=chunk_size,
        concurrency=concurrency,
        on_progress=on_progress,
        desc="Prompts",
    )
    if len(results) < len(blocks):
        logger.warning(f"Generated {len(results)} prompts for {len(blocks)} subtitle lines")
    else:
        logger.info(f"Generated {len(results)} prompts")
    return results


async def fix_prompt(client: AsyncOpenAI, prompt: str, model: str = DEFAULT_MODEL) -> str:
    """Rewrite a rejected image prompt into a compliant one."""
    _require_client(client)
    try:
        content = await _complete(client, model, FIX_SYSTEM, f'Original prompt: "{prompt}"', temperature=0.7, json_mode=False)
    except Exception as e:
        logger.error(f"Prompt repair failed: {e}")
        raise GenerationError(f"Prompt repair failed: {e}") from e
    fixed = content.strip().strip('"').strip()
    if not fixed:
        raise GenerationError("Prompt repair returned an empty response")
    return fixed


def make_prompt_fixer(client: AsyncOpenAI, model: str = DEFAULT_MODEL) -> Callable[[str], Awaitable[str]]:
    """Create a prompt sanitizer bound to an OpenAI client."""

    async def _fix(prompt: str) -> str:
        return await fix_prompt(client, prompt, model)

    return _fix
