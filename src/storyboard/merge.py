"""
Rule-driven merging of short subtitle lines.

Rules split the subtitle line numbers into consecutive sections. Inside a
section, a block with fewer words than the section's threshold absorbs the
following blocks of the same section until it reaches the threshold. Merging
never crosses a section boundary, so a short block right before a boundary
stays short.
"""

import logging
from collections.abc import Sequence

from .errors import PolicyError
from .models import MergeRule, SubtitleBlock
from .srt_utils import format_srt, parse_srt, word_count

logger = logging.getLogger("storyboard")

DEFAULT_MERGE_WORDS = 5
DEFAULT_PART_SPAN = 20


def resolve_rule_position(line_number: int, rules: Sequence[MergeRule]) -> int | None:
    """Return the position of the rule governing ``line_number``."""
    start_line = 1
    for pos, rule in enumerate(rules):
        if start_line <= line_number <= rule.process_up_to_line:
            return pos
        start_line = rule.process_up_to_line + 1
    # Lines past the last bound belong to the last rule
    if rules and line_number > rules[-1].process_up_to_line:
        return len(rules) - 1
    return None


def resolve_rule(line_number: int, rules: Sequence[MergeRule]) -> MergeRule | None:
    """Return the rule governing ``line_number``, or None if no rule applies."""
    pos = resolve_rule_position(line_number, rules)
    return None if pos is None else rules[pos]


def validate_rules(rules: Sequence[MergeRule]) -> None:
    """Reject rule sequences whose bounds go backwards."""
    for prev, cur in zip(rules, rules[1:]):
        if cur.process_up_to_line < prev.process_up_to_line:
            raise PolicyError(
                f"Merge rule bounds must be non-decreasing: "
                f"{prev.process_up_to_line} is followed by {cur.process_up_to_line}"
            )


def _absorb(acc: SubtitleBlock, nxt: SubtitleBlock) -> SubtitleBlock:
    text = " ".join(t for t in (acc.text.strip(), nxt.text.strip()) if t)
    return SubtitleBlock(index=acc.index, start_time=acc.start_time, end_time=nxt.end_time, text=text)


def merge_blocks(blocks: list[SubtitleBlock], rules: Sequence[MergeRule]) -> list[SubtitleBlock]:
    """Merge short blocks forward within their section and renumber from 1."""
    if len(blocks) < 2:
        return blocks
    validate_rules(rules)

    merged: list[SubtitleBlock] = []
    i = 0
    while i < len(blocks):
        current = blocks[i]
        pos = resolve_rule_position(current.index, rules)
        if pos is not None:
            threshold = rules[pos].merge_lines_with_fewer_than
            if word_count(current.text) < threshold:
                while i + 1 < len(blocks):
                    nxt = blocks[i + 1]
                    if resolve_rule_position(nxt.index, rules) != pos:
                        break
                    current = _absorb(current, nxt)
                    i += 1
                    if word_count(current.text) >= threshold:
                        break
        merged.append(current)
        i += 1

    logger.debug(f"Merged {len(blocks)} blocks into {len(merged)}")
    return [
        SubtitleBlock(index=n, start_time=b.start_time, end_time=b.end_time, text=b.text)
        for n, b in enumerate(merged, 1)
    ]


def merge_subtitles(content: str, rules: Sequence[MergeRule]) -> str:
    """Parse SRT text, merge it with ``rules`` and format it again."""
    if not rules:
        raise PolicyError("No merge rules to apply")
    blocks = parse_srt(content)
    if len(blocks) < 2:
        return content
    merged = merge_blocks(blocks, rules)
    logger.info(f"Merged subtitles: {len(blocks)} -> {len(merged)} blocks")
    return format_srt(merged)


def parse_merge_words(config: str) -> list[int]:
    """Parse a ``"5;3;8"`` style list, dropping non-positive or non-numeric items."""
    values: list[int] = []
    for token in config.split(";"):
        try:
            n = int(token.strip())
        except ValueError:
            continue
        if n > 0:
            values.append(n)
    return values


def merge_words_for_part(index: int, values: Sequence[int]) -> int:
    """Threshold for section ``index``; the last value repeats."""
    if not values:
        return DEFAULT_MERGE_WORDS
    if index < len(values):
        return values[index]
    return values[-1]


def build_rules(
    bounds: Sequence[int],
    merge_words: Sequence[int],
    number_of_parts: int | None = None,
) -> list[MergeRule]:
    """
    Build merge rules from section end lines and word thresholds.

    Args:
        bounds: Last subtitle line of each section
        merge_words: Thresholds per section (see ``parse_merge_words``)
        number_of_parts: Total sections; sections without a bound extend the
            previous one by ``DEFAULT_PART_SPAN`` lines

    Returns:
        One rule per section
    """
    parts = len(bounds) if number_of_parts is None else number_of_parts
    rules: list[MergeRule] = []
    for i in range(parts):
        if i < len(bounds):
            up_to = bounds[i]
        else:
            last = rules[-1].process_up_to_line if rules else 0
            up_to = last + DEFAULT_PART_SPAN
        rules.append(MergeRule(process_up_to_line=up_to, merge_lines_with_fewer_than=merge_words_for_part(i, merge_words)))
    return rules
