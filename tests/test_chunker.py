"""
Test cases for boundary-aware chunking.
"""

import pytest

from knowbase.core.chunker import (
    chunk_text,
    enforce_chunk_limit,
    estimate_tokens,
    find_best_split_point,
    truncate_for_embedding,
    contains_cjk,
)
from knowbase.core.errors import ChunkCountExceeded


def test_empty_content_returns_no_chunks():
    assert chunk_text("", 100, 10) == []


@pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (10, 10), (10, 12), (10, -1)])
def test_invalid_parameters_raise(size, overlap):
    with pytest.raises(ValueError):
        chunk_text("some text", size, overlap)


def test_short_text_is_a_single_chunk():
    chunks = chunk_text("  Hello world.  ", 100, 10)

    assert len(chunks) == 1
    assert chunks[0].text == "Hello world."
    assert chunks[0].index == 0
    assert chunks[0].start == 2
    assert chunks[0].end == 14


def test_cjk_sentences_split_on_terminators():
    """A。B。C。D。E。 with size 4 and overlap 1 cuts after each full stop."""
    chunks = chunk_text("A。B。C。D。E。", 4, 1)

    assert [c.text for c in chunks] == ["A。B。", "。C。", "。D。", "。E。"]
    assert [c.start for c in chunks] == [0, 3, 5, 7]
    assert [c.index for c in chunks] == [0, 1, 2, 3]


def test_chunks_respect_size_and_cover_text():
    text = "The quick brown fox jumps over the lazy dog. " * 40
    chunks = chunk_text(text, 120, 20)

    assert len(chunks) > 1
    for chunk in chunks:
        assert 0 < len(chunk.text) <= 120
        assert text[chunk.start:chunk.end] == chunk.text
    # consecutive chunks move forward and leave no gap
    for prev, cur in zip(chunks, chunks[1:]):
        assert cur.start > prev.start
        assert cur.start <= prev.end + 1


@pytest.mark.parametrize("text,size,overlap", [
    ("aaaaa.bbbbbbbbbbbbbbbbbbbbbbbbbbbbbb", 10, 8),
    ("Hi there. " * 12, 12, 10),
    ("一二三。四五六七八九十。" * 6, 9, 7),
])
def test_large_overlap_after_early_boundary_leaves_no_gap(text, size, overlap):
    chunks = chunk_text(text, size, overlap)

    covered = set()
    for chunk in chunks:
        covered.update(range(chunk.start, chunk.end))
    missing = [i for i, ch in enumerate(text) if not ch.isspace() and i not in covered]
    assert missing == []
    starts = [c.start for c in chunks]
    assert starts == sorted(set(starts))


def test_split_prefers_latest_boundary_past_one_third():
    window = "abc. defghijklmnop! qrst"
    # '.' at 3 is before size//3 == 8, '!' at 18 qualifies
    assert find_best_split_point(window, 24) == 19


def test_no_boundary_uses_raw_window_edge():
    assert find_best_split_point("abcdefghij", 10) is None
    chunks = chunk_text("abcdefghijklmnopqrst", 10, 0)
    assert [c.text for c in chunks] == ["abcdefghij", "klmnopqrst"]


def test_whitespace_only_windows_are_dropped():
    chunks = chunk_text("first part" + " " * 30 + "second", 10, 0)

    assert all(c.text.strip() for c in chunks)
    assert [c.text for c in chunks][0] == "first part"
    assert chunks[-1].text == "second"


def test_combining_marks_stay_with_base_character():
    # "e" followed by U+0301 must never be cut apart
    text = "abcde\u0301fghij"
    chunks = chunk_text(text, 5, 0)

    assert not any(c.text.startswith("\u0301") for c in chunks)
    assert chunks[1].text == "e\u0301fgh"
    assert "".join(c.text for c in chunks) == text


def test_multibyte_text_never_breaks_characters():
    text = "知识库检索" * 50
    chunks = chunk_text(text, 64, 8)

    for chunk in chunks:
        chunk.text.encode("utf-8")
        assert set(chunk.text) <= set("知识库检索")


def test_token_estimate_from_utf8_length():
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("知识") == 2  # 6 bytes


def test_chunk_limit_enforced():
    enforce_chunk_limit(list(range(5)), limit=5, warn_at=3)
    with pytest.raises(ChunkCountExceeded) as exc:
        enforce_chunk_limit(list(range(6)), limit=5, warn_at=3)
    assert exc.value.count == 6
    assert exc.value.limit == 5


def test_truncation_budget_depends_on_script():
    assert contains_cjk("hello 世界")
    assert not contains_cjk("hello world")

    assert len(truncate_for_embedding("字" * 600)) == 512
    assert len(truncate_for_embedding("a" * 3000)) == 2048
    assert truncate_for_embedding("short") == "short"
