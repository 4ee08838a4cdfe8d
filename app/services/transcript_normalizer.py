from __future__ import annotations

import re
from enum import StrEnum

_CUE_NUMBER_PATTERN = re.compile(r"^\d+$")
_MARKUP_TAG_PATTERN = re.compile(r"<[^>]*>")
_BLOCK_SEPARATOR_PATTERN = re.compile(r"\n\s*\n")
_VTT_HEADER_PREFIXES = ("NOTE", "Kind:", "Language:")
_TIMESTAMP_ARROW = "-->"


class TranscriptFormat(StrEnum):
    vtt = "vtt"
    srt = "srt"
    plain = "plain"


def classify_transcript_format(content: str) -> TranscriptFormat:
    text = _normalize_line_endings(content)
    if "WEBVTT" in text or _TIMESTAMP_ARROW in text:
        return TranscriptFormat.vtt
    if _has_srt_block_shape(text):
        return TranscriptFormat.srt
    return TranscriptFormat.plain


def normalize_transcript_text(content: str) -> str:
    transcript_format = classify_transcript_format(content)
    return normalize_transcript_text_as(content, transcript_format)


def normalize_transcript_text_as(content: str, transcript_format: TranscriptFormat) -> str:
    text = _normalize_line_endings(content)
    if transcript_format == TranscriptFormat.vtt:
        return parse_vtt(text)
    if transcript_format == TranscriptFormat.srt:
        return parse_srt(text)
    return text.strip()


def parse_vtt(content: str) -> str:
    text_lines: list[str] = []
    expecting_caption = False

    for raw_line in _normalize_line_endings(content).split("\n"):
        line = raw_line.strip()
        if not line or line == "WEBVTT" or line.startswith("WEBVTT "):
            continue
        if line.startswith(_VTT_HEADER_PREFIXES):
            continue
        if _TIMESTAMP_ARROW in line:
            expecting_caption = True
            continue
        if _CUE_NUMBER_PATTERN.match(line):
            continue
        if not expecting_caption:
            continue

        cleaned = clean_caption_line(line)
        if cleaned:
            text_lines.append(cleaned)
        expecting_caption = False

    return "\n".join(text_lines).strip()


def parse_srt(content: str) -> str:
    text_lines: list[str] = []
    for block in _BLOCK_SEPARATOR_PATTERN.split(_normalize_line_endings(content)):
        lines = block.strip().split("\n")
        if len(lines) < 3:
            continue
        for raw_line in lines[2:]:
            cleaned = clean_caption_line(raw_line)
            if cleaned:
                text_lines.append(cleaned)
    return "\n".join(text_lines).strip()


def clean_caption_line(line: str) -> str:
    cleaned = _MARKUP_TAG_PATTERN.sub("", line)
    cleaned = cleaned.replace("&amp;", "&").replace("&lt;", "<").replace("&gt;", ">")
    return cleaned.strip()


def _has_srt_block_shape(text: str) -> bool:
    lines = text.split("\n")
    for index, line in enumerate(lines[:-1]):
        if _CUE_NUMBER_PATTERN.match(line.strip()) and _TIMESTAMP_ARROW in lines[index + 1]:
            return True
    return False


def _normalize_line_endings(content: str) -> str:
    return content.replace("\r\n", "\n").replace("\r", "\n")
