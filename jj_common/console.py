"""
Console text normalization.

Jenkins serves progressive console output as HTML. Before lines are shown
under the progress bar they are reduced to plain, non-blank, bounded-width
text, and overlap caused by retransmission at cursor boundaries is
suppressed within a batch.
"""

import html
import re

MAX_LINES = 50
LINE_WIDTH = 100
MAX_CHUNKS = 10

_TAG_RE = re.compile(r"<[^>]*>")


def strip_html_tags(text: str) -> str:
    """Remove markup, decode entities and drop blank lines."""
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    return "\n".join(line for line in text.split("\n") if line.strip())


def chunk_line(
    line: str, size: int = LINE_WIDTH, max_chunks: int = MAX_CHUNKS
) -> list[str]:
    """
    Split a line into fixed-width chunks, in order.

    At most ``max_chunks`` chunks are produced; the rest of a pathological
    single line is dropped.
    """
    if len(line) <= size:
        return [line]
    chunks = []
    for start in range(0, len(line), size):
        if len(chunks) >= max_chunks:
            break
        chunks.append(line[start : start + size])
    return chunks


def normalize_console(
    raw: str,
    max_lines: int = MAX_LINES,
    width: int = LINE_WIDTH,
    max_chunks: int = MAX_CHUNKS,
) -> list[str]:
    """
    Turn a raw console block into display lines.

    Args:
        raw: Text returned by one progressive console fetch
        max_lines: Number of most recent source lines to keep
        width: Chunk width for long lines
        max_chunks: Chunk limit per source line

    Returns:
        Chunks in chronological order. A chunk whose trimmed text was
        already emitted by this call is skipped.
    """
    text = strip_html_tags(raw)
    if not text:
        return []

    lines = text.split("\n")[-max_lines:]
    seen: set[str] = set()
    result = []
    for line in lines:
        for chunk in chunk_line(line, width, max_chunks):
            trimmed = chunk.strip()
            if not trimmed or trimmed in seen:
                continue
            seen.add(trimmed)
            result.append(chunk)
    return result
