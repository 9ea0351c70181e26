"""
Tests for GPT-backed prompt generation, with a fake OpenAI client.
"""

import asyncio
import json
import re
from types import SimpleNamespace

import pytest

from storyboard.errors import ContractError, GenerationError, PolicyError
from storyboard.models import SubtitleBlock
from storyboard.prompts import (
    analyze_sections,
    check_chunk_coverage,
    fix_prompt,
    generate_image_prompts,
    parse_prompt_results,
)


def _reply(content: str):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeOpenAI:
    """Minimal AsyncOpenAI stand-in: ``handler(messages)`` returns the reply text."""

    def __init__(self, handler):
        self.requests: list[dict] = []

        async def create(**kwargs):
            self.requests.append(kwargs)
            return _reply(handler(kwargs["messages"]))

        self.chat = SimpleNamespace(completions=SimpleNamespace(create=create))


def _blocks(n: int) -> list[SubtitleBlock]:
    return [SubtitleBlock(i, "00:00:01,000", "00:00:02,000", f"line {i}") for i in range(1, n + 1)]


def _prompt_handler(messages):
    user = messages[-1]["content"]
    indexes = [int(m) for m in re.findall(r"^(\d+)\n\d\d:", user, flags=re.M)]
    items = [{"subtitleIndex": i, "subtitleText": f"line {i}", "imagePrompt": f"scene {i}"} for i in reversed(indexes)]
    return json.dumps({"items": items})


def test_parse_prompt_results_shapes():
    bare = '[{"subtitleIndex": 2, "subtitleText": "b", "imagePrompt": " p2 "}]'
    wrapped = '{"items": [{"subtitleIndex": 1, "imagePrompt": "p1"}]}'
    fenced = "```json\n" + bare + "\n```"

    assert parse_prompt_results(bare)[0].image_prompt == "p2"
    assert parse_prompt_results(wrapped)[0].subtitle_index == 1
    assert parse_prompt_results(fenced)[0].subtitle_text == "b"


@pytest.mark.parametrize(
    "content",
    [
        "not json at all",
        '{"a": 1}',
        '[{"subtitleIndex": "1", "imagePrompt": "p"}]',
        '[{"subtitleIndex": 1}]',
        "[1, 2]",
    ],
)
def test_parse_prompt_results_contract_violations(content):
    with pytest.raises(ContractError):
        parse_prompt_results(content)


def test_generate_image_prompts_orders_across_chunks():
    client = FakeOpenAI(_prompt_handler)

    results = asyncio.run(generate_image_prompts(client, _blocks(7), "noir", chunk_size=3, concurrency=2))

    assert [r.subtitle_index for r in results] == list(range(1, 8))
    assert results[0].image_prompt == "scene 1"
    assert len(client.requests) == 3
    assert 'noir' in client.requests[0]["messages"][-1]["content"]


def test_generate_image_prompts_drops_broken_chunk():
    """A chunk whose reply never matches the contract is lost after one retry."""

    def handler(messages):
        user = messages[-1]["content"]
        if re.search(r"^4\n", user, flags=re.M):
            return "sorry, I cannot help"
        return _prompt_handler(messages)

    client = FakeOpenAI(handler)
    results = asyncio.run(generate_image_prompts(client, _blocks(6), "noir", chunk_size=3))

    assert [r.subtitle_index for r in results] == [1, 2, 3]
    assert len(client.requests) == 3


@pytest.mark.parametrize("extra", [999, 2])
def test_check_chunk_coverage_rejects_unknown_and_duplicate(extra):
    chunk = _blocks(3)
    results = parse_prompt_results(json.dumps([{"subtitleIndex": i, "imagePrompt": f"p{i}"} for i in (1, 2, extra)]))

    with pytest.raises(ContractError):
        check_chunk_coverage(results, chunk)


def test_check_chunk_coverage_accepts_partial_chunk():
    results = parse_prompt_results('[{"subtitleIndex": 3, "imagePrompt": "p3"}]')
    check_chunk_coverage(results, _blocks(3))


def test_generate_image_prompts_drops_chunk_with_stray_items():
    """Items for lines outside the chunk, or repeated lines, fail the chunk."""

    def handler(messages):
        data = json.loads(_prompt_handler(messages))
        if any(item["subtitleIndex"] == 3 for item in data["items"]):
            data["items"].append({"subtitleIndex": 3, "imagePrompt": "again"})
            data["items"].append({"subtitleIndex": 999, "imagePrompt": "stray"})
        return json.dumps(data)

    client = FakeOpenAI(handler)
    results = asyncio.run(generate_image_prompts(client, _blocks(4), "noir", chunk_size=2))

    assert [r.subtitle_index for r in results] == [1, 2]
    assert len(client.requests) == 4


def test_generate_image_prompts_policy_errors():
    client = FakeOpenAI(_prompt_handler)
    with pytest.raises(PolicyError):
        asyncio.run(generate_image_prompts(client, [], "noir"))
    with pytest.raises(PolicyError):
        asyncio.run(generate_image_prompts(client, _blocks(1), "  "))
    with pytest.raises(PolicyError):
        asyncio.run(generate_image_prompts(None, _blocks(1), "noir"))


def test_analyze_sections():
    client = FakeOpenAI(
        lambda m: json.dumps({"items": [{"section": 2, "subtitleLine": 30}, {"section": 1, "subtitleLine": 12}]})
    )

    boundaries = asyncio.run(analyze_sections(client, "1. a\n2. b", "srt"))

    assert [(b.section, b.subtitle_line) for b in boundaries] == [(1, 12), (2, 30)]


def test_analyze_sections_failure():
    client = FakeOpenAI(lambda m: "garbage")
    with pytest.raises(GenerationError, match="Content analysis failed"):
        asyncio.run(analyze_sections(client, "1. a", "srt"))


def test_fix_prompt_strips_quotes():
    client = FakeOpenAI(lambda m: '  "a calm harbor at dawn"  ')
    assert asyncio.run(fix_prompt(client, "bad prompt")) == "a calm harbor at dawn"


def test_fix_prompt_empty_reply():
    client = FakeOpenAI(lambda m: '""')
    with pytest.raises(GenerationError):
        asyncio.run(fix_prompt(client, "bad prompt"))
