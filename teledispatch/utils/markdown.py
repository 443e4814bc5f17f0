"""Markdown formatting utilities for Telegram MarkdownV2."""

import re

# Characters that need escaping in MarkdownV2
_SPECIAL_CHARS = set("_*[]()~`>#+-=|{}.!")
# Always escaped
_PLAIN_ESCAPE = set("~>+=|.!")
# Formatting markers: kept when paired on a line, escaped otherwise
_PAIRED_MARKERS = set("`_*")
_BRACKETS = set("{}[]()")

_COLLAPSE_PATTERN = re.compile(r"\*{2}|#{2,}\s")


def _format_line(line: str) -> str:
    # "**bold**" -> "*bold*", "## Title" -> "#Title"
    chars = list(_COLLAPSE_PATTERN.sub(lambda m: m.group(0)[0], line))
    stack: list[str] = []
    indexes: list[int] = []

    for i, char in enumerate(list(chars)):
        if char not in _SPECIAL_CHARS:
            continue
        if i > 0 and chars[i - 1] == "\\":
            continue

        if char == "#":
            if i == 0:
                rest = chars[2:] if len(chars) > 1 and chars[1] == " " else chars[1:]
                chars = ["*", _format_line("".join(rest)), "*"]
                break
            chars[i] = "\\#"
            continue

        if char == "-":
            if i == 0 and len(chars) > 1 and chars[1] == " ":
                chars[0] = ""
                chars[1] = ""
            else:
                chars[i] = "\\-"
            continue

        if char in _PLAIN_ESCAPE:
            chars[i] = "\\" + char
            continue

        if char in _PAIRED_MARKERS:
            if stack and stack[-1] == char:
                stack.pop()
                indexes.pop()
            else:
                stack.append(char)
                indexes.append(i)
            continue

        if char in _BRACKETS:
            stack.append(char)
            indexes.append(i)

    # [text](url) survives as a link: four consecutive stack entries "[", "]", "(", ")"
    for pos in range(3, len(stack)):
        if stack[pos - 3 : pos + 1] == ["[", "]", "(", ")"]:
            for j in range(pos - 3, pos + 1):
                indexes[j] = -1

    for idx in indexes:
        if idx == -1:
            continue
        chars[idx] = "\\" + chars[idx]

    return "".join(chars)


def format_markdown_v2(text: str) -> str:
    """Convert loosely written Markdown into Telegram MarkdownV2.

    Works line by line:
    - "# Heading" lines become bold
    - "- item" bullets lose their marker
    - paired *, _ and ` stay as formatting, unpaired ones are escaped
    - [text](url) links are kept, other brackets are escaped
    - already escaped characters are left untouched

    Tables (|) and fenced code blocks are not supported.

    Args:
        text: Input markdown text

    Returns:
        Text safe to send with parse_mode="MarkdownV2"
    """
    return "\n".join(_format_line(line) for line in text.split("\n"))
