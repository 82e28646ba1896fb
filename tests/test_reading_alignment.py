import pytest

from kaiwa.services.reading_alignment import (
    ReadingSegment,
    align,
    render_inline,
    render_ruby,
)


def test_align_attaches_readings_to_kanji_runs() -> None:
    segments = list(align("私は学生です", "わたしはがくせいです"))

    assert segments == [
        ReadingSegment("私", "わたし"),
        ReadingSegment("は"),
        ReadingSegment("学生", "がくせい"),
        ReadingSegment("で"),
        ReadingSegment("す"),
    ]


def test_align_is_restartable() -> None:
    alignment = align("今日は", "きょうは")

    first = list(alignment)
    second = list(alignment)

    assert first == second
    assert first[0] == ReadingSegment("今日", "きょう")
    assert alignment.literal_text() == "今日は"


def test_align_without_reading_returns_plain_text() -> None:
    assert list(align("東京駅", None)) == [ReadingSegment("東京駅")]
    assert list(align("東京駅", "")) == [ReadingSegment("東京駅")]


def test_align_empty_text_yields_nothing() -> None:
    assert list(align("", "なにか")) == []


def test_align_short_reading_never_drops_text() -> None:
    text = "今日は晴れ"
    segments = list(align(text, "きょう"))

    assert "".join(segment.literal for segment in segments) == text


def test_render_ruby_escapes_and_wraps_annotated_segments() -> None:
    html = render_ruby("私は<b>", "わたしは<b>")

    assert html.startswith("<ruby>私<rt>わたし</rt></ruby>は")
    assert "<b>" not in html
    assert "&lt;b&gt;" in html


def test_render_inline_uses_parentheses() -> None:
    assert render_inline("私は学生です", "わたしはがくせいです") == (
        "私(わたし)は学生(がくせい)です"
    )


@pytest.mark.parametrize("text", ["ありがとう", "コーヒー、ください。", "abc", "a"])
def test_align_identical_reading_has_no_annotations(text: str) -> None:
    segments = list(align(text, text))

    assert "".join(segment.literal for segment in segments) == text
    assert not any(segment.annotated for segment in segments)


@pytest.mark.parametrize(
    ("text", "reading"),
    [
        ("漢字漢字", "abc"),
        ("ab", "ba"),
        ("東京", "おおさか"),
        ("はい", "いいえ"),
        ("今日は", "x"),
        ("a", "ありがとうございます"),
    ],
)
def test_align_divergent_reading_keeps_all_text(text: str, reading: str) -> None:
    segments = list(align(text, reading))

    assert "".join(segment.literal for segment in segments) == text
