"""
Tests for stage orchestration and output files.
"""

import asyncio
import base64
import json
import os
import random
import re
from types import SimpleNamespace

from storyboard.credentials import CredentialPool
from storyboard.jobs import ImageJobDispatcher
from storyboard.models import ImageJob, JobState, MergeRule, PromptResult, SubtitleBlock
from storyboard.pipeline import (
    ImageStage,
    MergeStage,
    PromptStage,
    read_prompts,
    run_pipeline,
    write_images,
    write_prompts,
)
from storyboard.srt_utils import format_srt


def _fake_openai(handler):
    async def create(**kwargs):
        content = handler(kwargs["messages"])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def _prompt_handler(messages):
    user = messages[-1]["content"]
    items = [
        {"subtitleIndex": int(i), "subtitleText": "", "imagePrompt": f"scene {i}"}
        for i in re.findall(r"^(\d+)\n\d\d:", user, flags=re.M)
    ]
    return json.dumps({"items": items})


async def _image_service(prompt, aspect_ratio, token):
    return base64.b64encode(prompt.encode()).decode()


SUBTITLES = format_srt(
    [SubtitleBlock(i, f"00:00:{i:02d},000", f"00:00:{i:02d},500", w) for i, w in enumerate(["a", "b", "c", "d e f"], 1)]
)


def _stages(client, rules=(MergeRule(10, 2),)):
    dispatcher = ImageJobDispatcher(CredentialPool(["t0", "t1"]), _image_service, rng=random.Random(0))
    return MergeStage(rules), PromptStage(client, "noir"), ImageStage(dispatcher)


def test_run_pipeline_end_to_end():
    statuses: list[str] = []
    merge, prompt, image = _stages(_fake_openai(_prompt_handler))

    report = asyncio.run(run_pipeline(merge, prompt, image, SUBTITLES, on_status=statuses.append))

    assert report.ok
    # "a b", "c d e f" after merging with threshold 2
    assert [p.subtitle_index for p in report.prompts] == [1, 2]
    assert [j.state for j in report.jobs] == [JobState.SUCCESS, JobState.SUCCESS]
    assert statuses[0].startswith("Step 1") and statuses[-1] == "Done."


def test_run_pipeline_stops_at_failing_stage():
    merge, prompt, image = _stages(_fake_openai(lambda m: "not json"))

    report = asyncio.run(run_pipeline(merge, prompt, image, SUBTITLES))

    assert report.failed_stage == 2
    assert report.merged_text is not None
    assert report.jobs == []


def test_merge_stage_without_rules_or_content():
    merge, prompt, image = _stages(None, rules=())

    report = asyncio.run(run_pipeline(merge, prompt, image, SUBTITLES))

    assert report.failed_stage == 1
    assert "No merge rules" in report.error


def test_merge_stage_derives_rules_from_content():
    client = _fake_openai(lambda m: json.dumps([{"section": 1, "subtitleLine": 2}, {"section": 2, "subtitleLine": 4}]))
    stage = MergeStage(client=client, content_text="1. x\n2. y", merge_words=[5])

    merged = asyncio.run(stage.run(SUBTITLES))

    # Section 1 = lines 1-2, section 2 = lines 3-4; merging stops at the boundary
    assert "a b" in merged
    assert "c d e f" in merged


def test_write_and_read_prompts(tmp_path):
    path = tmp_path / "prompts.txt"
    write_prompts([PromptResult(1, "", "first scene"), PromptResult(2, "", "second. scene")], str(path))

    assert path.read_text(encoding="utf-8") == "1. first scene\n\n2. second. scene\n"
    assert read_prompts(str(path)) == ["first scene", "second. scene"]


def test_write_images(tmp_path):
    jobs = [
        ImageJob(0, "p", JobState.SUCCESS, None, base64.b64encode(b"png0").decode()),
        ImageJob(1, "p", JobState.FAILED, "boom", None),
        ImageJob(11, "p", JobState.SUCCESS, None, base64.b64encode(b"png11").decode()),
    ]

    paths = write_images(jobs, str(tmp_path / "images"))

    assert [os.path.basename(p) for p in paths] == ["001.png", "012.png"]
    assert (tmp_path / "images" / "012.png").read_bytes() == b"png11"


def test_write_images_skips_undecodable_data(tmp_path):
    jobs = [
        ImageJob(0, "p", JobState.SUCCESS, None, "A" * 201),
        ImageJob(1, "p", JobState.SUCCESS, None, base64.b64encode(b"png1").decode()),
    ]

    paths = write_images(jobs, str(tmp_path))

    assert [os.path.basename(p) for p in paths] == ["002.png"]
    assert not (tmp_path / "001.png").exists()
