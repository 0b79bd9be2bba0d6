from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

Replacement = str | Callable[[re.Match[str]], str]


class MarkupConverter(Protocol):
    def convert(self, text: str) -> str: ...


@dataclass(frozen=True)
class MarkupRule:
    name: str
    pattern: re.Pattern[str]
    replacement: Replacement

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


def _rule(name: str, pattern: str, replacement: Replacement, flags: int = 0) -> MarkupRule:
    return MarkupRule(name=name, pattern=re.compile(pattern, flags), replacement=replacement)


class RegexDialectConverter:
    """Best-effort line-oriented dialect swap.

    Rules run in order over the whole text. There is no parser behind this,
    so nested or unusual markup can come out wrong.
    """

    def __init__(self, rules: Iterable[MarkupRule]):
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[MarkupRule, ...]:
        return self._rules

    def convert(self, text: str) -> str:
        converted = text or ""
        for rule in self._rules:
            converted = rule.apply(converted)
        return converted


def _md_heading_to_issue(match: re.Match[str]) -> str:
    return f"h{len(match.group(1))}. {match.group(2)}"


def _md_fence_to_issue(match: re.Match[str]) -> str:
    lang = match.group(1)
    return f"{{code:{lang}}}" if lang else "{code}"


def _issue_heading_to_md(match: re.Match[str]) -> str:
    return f"{'#' * int(match.group(1))} {match.group(2)}"


def _issue_code_to_md(match: re.Match[str]) -> str:
    return f"```{match.group(1) or ''}"


# Markdown -> issue tracker wiki markup.
MARKDOWN_TO_ISSUE_RULES = (
    _rule("heading", r"^(#{1,6})[ \t]+(.+?)[ \t]*#*[ \t]*$", _md_heading_to_issue, re.MULTILINE),
    _rule("code_fence", r"^```([\w+#-]*)[ \t]*$", _md_fence_to_issue, re.MULTILINE),
    _rule("inline_code", r"(?<!`)`([^`\n]+)`(?!`)", r"{{\1}}"),
    _rule("italic", r"(?<![*\w])\*(?=\S)([^*\n]+?)(?<=\S)\*(?![*\w])", r"_\1_"),
    _rule("bold", r"\*\*(?=\S)([^*\n]+?)(?<=\S)\*\*", r"*\1*"),
    _rule("image", r"!\[[^\]\n]*\]\((\S+?)\)", r"!\1!"),
    _rule("link", r"\[([^\]\n]+)\]\((\S+?)\)", r"[\1|\2]"),
    _rule("rule", r"^-{3,}[ \t]*$", "----", re.MULTILINE),
)

# Issue tracker wiki markup -> Markdown, for content that arrives in the wrong dialect.
ISSUE_TO_MARKDOWN_RULES = (
    _rule("heading", r"^h([1-6])\.[ \t]+(.*)$", _issue_heading_to_md, re.MULTILINE),
    _rule("code_block", r"\{code(?::([\w+#-]+))?\}", _issue_code_to_md),
    _rule("noformat", r"\{noformat\}", "```"),
    _rule("monospace", r"\{\{([^}\n]+)\}\}", r"`\1`"),
    _rule("bold", r"(?<![*\w])\*(?=[^\s*])([^*\n]+?)(?<=[^\s*])\*(?![*\w])", r"**\1**"),
    _rule("link", r"\[([^\]|\n]+)\|([^\]\n]+)\]", r"[\1](\2)"),
    _rule("rule", r"^-{4}[ \t]*$", "---", re.MULTILINE),
)

ISSUE_CONVERTER = RegexDialectConverter(MARKDOWN_TO_ISSUE_RULES)
WIKI_CONVERTER = RegexDialectConverter(ISSUE_TO_MARKDOWN_RULES)
