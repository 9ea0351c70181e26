"""
Tests for SRT utilities.
"""

from storyboard.models import SubtitleBlock
from storyboard.srt_utils import format_srt, parse_srt, word_count

SAMPLE = (
    "1\n00:00:01,000 --> 00:00:02,500\nHello world.\n\n"
    "2\n00:00:02,500 --> 00:00:05,000\nThis is a test.\n\n"
    "3\n00:00:05,000 --> 00:00:07,500\nGoodbye!\n"
)


def test_parse_srt():
    """Test parsing well-formed SRT text."""
    blocks = parse_srt(SAMPLE)

    assert len(blocks) == 3
    assert blocks[0] == SubtitleBlock(1, "00:00:01,000", "00:00:02,500", "Hello world.")
    assert blocks[2].text == "Goodbye!"


def test_format_srt_roundtrip():
    """Well-formed text survives parse -> format unchanged."""
    assert format_srt(parse_srt(SAMPLE)) == SAMPLE


def test_parse_normalizes_dot_and_crlf():
    """Dot decimal separators become commas; carriage returns are ignored."""
    text = "1\r\n00:00:01.000 --> 00:00:02.250\r\nLine one\r\nLine two\r\n\r\n"
    blocks = parse_srt(text)

    assert len(blocks) == 1
    assert blocks[0].start_time == "00:00:01,000"
    assert blocks[0].end_time == "00:00:02,250"
    # Multi-line text keeps its internal newline
    assert blocks[0].text == "Line one\nLine two"


def test_parse_drops_malformed_blocks():
    """Blocks without index, timecode or text are skipped silently."""
    text = (
        "x\n00:00:01,000 --> 00:00:02,000\nBad index\n\n"
        "2\nnot a timecode\nBad time\n\n"
        "3\n00:00:03,000 --> 00:00:04,000\n\n"
        "4\n00:00:05,000 --> 00:00:06,000\nKept\n"
    )
    blocks = parse_srt(text)

    assert [b.index for b in blocks] == [4]
    assert blocks[0].text == "Kept"


def test_parse_empty_text():
    assert parse_srt("") == []
    assert parse_srt("   \n\n  ") == []


def test_word_count():
    assert word_count("  one two\nthree  ") == 3
    assert word_count("") == 0
    assert word_count("   ") == 0
