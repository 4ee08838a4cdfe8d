from app.services.transcript_normalizer import (
    TranscriptFormat,
    classify_transcript_format,
    clean_caption_line,
    normalize_transcript_text,
    normalize_transcript_text_as,
)


def test_minimal_vtt_cue_is_reduced_to_caption_text() -> None:
    content = "00:00:01.000 --> 00:00:03.000\nHello world"

    assert classify_transcript_format(content) == TranscriptFormat.vtt
    assert normalize_transcript_text(content) == "Hello world"


def test_timestamp_arrow_classifies_as_vtt_before_srt_shape() -> None:
    content = "1\n00:00:01,000 --> 00:00:03,000\nHello world"

    assert classify_transcript_format(content) == TranscriptFormat.vtt
    assert normalize_transcript_text(content) == "Hello world"


def test_zoom_vtt_drops_header_notes_and_cue_numbers() -> None:
    content = (
        "WEBVTT\n"
        "Kind: captions\n"
        "Language: en\n"
        "\n"
        "NOTE generated for the weekly sync\n"
        "\n"
        "1\n"
        "00:00:01.000 --> 00:00:03.000\n"
        "<v Alice>Alice Smith: Hello &amp; welcome</v>\n"
        "\n"
        "2\n"
        "00:00:04.000 --> 00:00:06.000\n"
        "Bob Jones: 1 &lt; 2 &gt; 0\n"
    )

    assert classify_transcript_format(content) == TranscriptFormat.vtt
    assert normalize_transcript_text(content) == (
        "Alice Smith: Hello & welcome\n"
        "Bob Jones: 1 < 2 > 0"
    )


def test_vtt_keeps_only_first_line_after_each_timestamp() -> None:
    content = "WEBVTT\n\n00:00:01.000 --> 00:00:02.000\nline one\nline two\n"

    assert normalize_transcript_text(content) == "line one"


def test_srt_keeps_multiline_captions_in_block_order() -> None:
    content = (
        "1\r\n"
        "00:00:01,000 --> 00:00:03,000\r\n"
        "Hello\r\n"
        "world\r\n"
        "\r\n"
        "2\r\n"
        "00:00:04,000 --> 00:00:05,000\r\n"
        "<i>Again</i>\r\n"
        "\r\n"
        "3\r\n"
        "00:00:06,000 --> 00:00:07,000\r\n"
    )

    assert normalize_transcript_text_as(content, TranscriptFormat.srt) == "Hello\nworld\nAgain"


def test_numbered_cues_with_timestamps_follow_vtt_rules() -> None:
    content = (
        "1\r\n"
        "00:00:01,000 --> 00:00:03,000\r\n"
        "Hello\r\n"
        "world\r\n"
        "\r\n"
        "2\r\n"
        "00:00:04,000 --> 00:00:05,000\r\n"
        "<i>Again</i>\r\n"
    )

    assert classify_transcript_format(content) == TranscriptFormat.vtt
    assert normalize_transcript_text(content) == "Hello\nAgain"


def test_plain_text_is_only_trimmed() -> None:
    content = "  Alice Smith: Hi there\nBob Jones: Hello  \n"

    assert classify_transcript_format(content) == TranscriptFormat.plain
    assert normalize_transcript_text(content) == "Alice Smith: Hi there\nBob Jones: Hello"


def test_numbered_lines_without_timestamps_stay_plain() -> None:
    content = "Agenda\n1\nBudget review"

    assert classify_transcript_format(content) == TranscriptFormat.plain
    assert normalize_transcript_text(content) == content


def test_header_only_vtt_normalizes_to_empty_text() -> None:
    assert normalize_transcript_text("WEBVTT\n\n") == ""


def test_normalize_as_uses_given_format() -> None:
    content = "00:00:01.000 --> 00:00:03.000\nHello world"

    assert normalize_transcript_text_as(content, TranscriptFormat.plain) == content


def test_clean_caption_line_strips_markup_and_entities() -> None:
    assert clean_caption_line("  <c.yellow>Tom &amp; Jerry</c>  ") == "Tom & Jerry"
