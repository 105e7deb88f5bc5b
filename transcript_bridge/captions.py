"""
Caption (WebVTT) normalisation.

Transcript content is served as cue-based caption text:

    WEBVTT

    1
    00:00:01.000 --> 00:00:05.000
    <v Alice Smith>Good morning everyone.</v>

Normalisation drops the header, cue identifiers and timing lines and
emits one "Speaker: text" line per caption line. A line without a
speaker tag is attributed to the most recently seen speaker.
"""

import re
from typing import List, Optional

CAPTION_HEADER = "WEBVTT"

_SPEAKER_TAG = re.compile(r"^<v(?:\.[^\s>]+)*\s+([^>]+)>")
_ANY_TAG = re.compile(r"</?[^>]+>")
_NUMERIC = re.compile(r"^\d+$")
_NOTE_BLOCK_PREFIXES = ("NOTE", "STYLE", "REGION")


def is_caption_format(content: Optional[str]) -> bool:
    """True when the content starts with the caption header."""
    if not content:
        return False
    return content.lstrip("\ufeff").strip().startswith(CAPTION_HEADER)


def _is_timing(line: str) -> bool:
    return "-->" in line


def _next_line(lines: List[str], index: int) -> str:
    return lines[index + 1].strip() if index + 1 < len(lines) else ""


def captions_to_text(content: str) -> str:
    """
    Convert caption content to plain speaker-attributed lines.

    Args:
        content: Caption text (header optional)

    Returns:
        Newline-joined lines, "Speaker: text" where a speaker is known
    """
    lines = content.lstrip("\ufeff").splitlines()
    output: List[str] = []
    speaker = ""
    skipping_block = False

    for index, raw in enumerate(lines):
        line = raw.strip()

        if not line:
            skipping_block = False
            continue
        if skipping_block:
            continue
        if line.startswith(CAPTION_HEADER) and not output:
            continue
        if line.startswith(_NOTE_BLOCK_PREFIXES):
            skipping_block = True
            continue
        if _is_timing(line) or _NUMERIC.match(line):
            continue

        # a cue identifier is any line directly followed by a timing line
        if _is_timing(_next_line(lines, index)) and not line.startswith("<"):
            continue

        match = _SPEAKER_TAG.match(line)
        if match:
            speaker = match.group(1).strip()
        text = _ANY_TAG.sub("", line).strip()
        if not text:
            continue

        output.append(f"{speaker}: {text}" if speaker else text)

    return "\n".join(output)


def normalize_transcript(content: str) -> str:
    """Captions are normalised; any other text is returned stripped."""
    if is_caption_format(content):
        return captions_to_text(content)
    return content.strip()
