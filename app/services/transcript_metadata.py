from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol

WORDS_PER_MINUTE = 150
_SPEAKER_LABEL_PATTERN = re.compile(r"^([A-Z][a-z]+ [A-Z][a-z]+):", re.MULTILINE)


class ParticipantExtractor(Protocol):
    def __call__(self, text: str) -> list[str]: ...


@dataclass
class TranscriptMetadata:
    estimated_duration_minutes: int
    participants: list[str] = field(default_factory=list)


def estimate_duration_minutes(text: str) -> int:
    word_count = len(text.split())
    # Half-up rounding; Python's round() would send 2.5 to 2.
    return max(1, int(word_count / WORDS_PER_MINUTE + 0.5))


def extract_speaker_labels(text: str) -> list[str]:
    """Collect "First Last:" speaker labels in order of first appearance.

    This is a heuristic: it only recognises two capitalised words followed
    by a colon at the start of a line, so single names, initials or
    non-ASCII names are missed.
    """
    participants: list[str] = []
    seen: set[str] = set()
    for match in _SPEAKER_LABEL_PATTERN.finditer(text):
        name = match.group(1)
        if name in seen:
            continue
        seen.add(name)
        participants.append(name)
    return participants


def derive_metadata(
    text: str,
    participant_extractor: ParticipantExtractor = extract_speaker_labels,
) -> TranscriptMetadata:
    return TranscriptMetadata(
        estimated_duration_minutes=estimate_duration_minutes(text),
        participants=participant_extractor(text),
    )
