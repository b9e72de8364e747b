"""Shrink built prompts to a provider's prompt length limit.

Built prompts are blank-line separated sections in priority order, followed
by a ``NEGATIVE PROMPT:`` section of comma-separated terms. Providers take
different maximum lengths and carry negatives differently, so each adapter
renders its own request from these pieces.
"""

import re

NEGATIVE_MARKER = "\n\nNEGATIVE PROMPT: "
SECTION_BREAK = "\n\n"
TERM_SEPARATOR = ", "

# Characters kept free for negative terms when they share the positive text's limit
NEGATIVE_RESERVE = 200

_TERM_SPLIT = re.compile(r"[,\n]")


def split_negative(prompt: str) -> tuple[str, str]:
    """Split a built prompt into its positive text and negative terms."""
    positive, _, negative = prompt.partition(NEGATIVE_MARKER)
    return positive.strip(), negative.strip()


def positive_budget(max_length: int, negative: str) -> int:
    return max_length - NEGATIVE_RESERVE if negative else max_length


def join_negative(positive: str, negative: str) -> str:
    if not negative:
        return positive
    return f"{positive}{NEGATIVE_MARKER}{negative}"


def _first_clause(text: str) -> str:
    """Text up to the first comma outside parentheses."""
    depth = 0
    for i, char in enumerate(text):
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        elif char == "," and depth == 0:
            return text[:i].strip()
    return text.strip().rstrip(".")


def _condense_line(line: str) -> str:
    label, sep, body = line.partition(": ")
    if sep and label == label.upper():
        return f"{label}: {_first_clause(body)}"
    return _first_clause(line)


def condense_section(section: str) -> str:
    """Reduce a multi-line block to the leading clause of each line.

    Heading-only lines are dropped. Single-line sections are selection
    fragments and are kept whole.
    """
    lines = [line.strip() for line in section.splitlines() if line.strip()]
    if len(lines) <= 1:
        return section.strip()
    body = [line for line in lines if not line.endswith(":")]
    return "\n".join(_condense_line(line) for line in body)


def truncate_words(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    space = cut.rfind(" ")
    if space > 0:
        cut = cut[:space]
    return cut.rstrip(" ,;:")


def fit_prompt(text: str, max_length: int) -> str:
    """Fit positive prompt text into ``max_length`` characters.

    Text that already fits is returned unchanged. Otherwise every section is
    condensed and sections are kept in order while they fit; one that does
    not fit is skipped. If not even one section fits, the first is cut at a
    word boundary.
    """
    text = text.strip()
    if len(text) <= max_length:
        return text

    condensed = (condense_section(s) for s in text.split(SECTION_BREAK))
    sections = [s for s in condensed if s]
    kept: list[str] = []
    used = 0
    for section in sections:
        needed = len(section) + (len(SECTION_BREAK) if kept else 0)
        if used + needed <= max_length:
            kept.append(section)
            used += needed
    if kept:
        return SECTION_BREAK.join(kept)
    return truncate_words(sections[0] if sections else text, max_length)


def negative_terms(negative: str) -> list[str]:
    """Unique negative terms in order, without heading lines."""
    terms: list[str] = []
    seen: set[str] = set()
    for raw in _TERM_SPLIT.split(negative):
        term = raw.strip().rstrip(".")
        if not term or term.endswith(":") or term.lower() in seen:
            continue
        seen.add(term.lower())
        terms.append(term)
    return terms


def fit_terms(negative: str, max_length: int) -> str:
    """Join as many leading negative terms as fit into ``max_length``."""
    kept: list[str] = []
    used = 0
    for term in negative_terms(negative):
        needed = len(term) + (len(TERM_SEPARATOR) if kept else 0)
        if used + needed > max_length:
            break
        kept.append(term)
        used += needed
    return TERM_SEPARATOR.join(kept)
