from __future__ import annotations

import re
from datetime import date
from typing import Any

from workitems.markup import ISSUE_CONVERTER, WIKI_CONVERTER, MarkupConverter
from workitems.types import WorkItemContext

ISSUE_BANNER = "_Generated by the Figma AI ticket generator_\n\n"
WIKI_SOURCE_LINE = "**Source:** Figma Component\n"
FIGMA_DESIGN_BASE = "https://www.figma.com/design"

_WRAPPING_FENCE = re.compile(r"^\s*```[\w-]*[ \t]*\n(.*?)\n?```\s*$", re.DOTALL)


def strip_wrapping_fence(text: str | None) -> str:
    raw = (text or "").strip()
    match = _WRAPPING_FENCE.match(raw)
    if match:
        return match.group(1).strip()
    return raw


def issue_summary(component_name: str) -> str:
    return f"Implement {component_name}"


def wiki_title(component_name: str) -> str:
    return f"Implementation Plan: {component_name}"


def format_issue_description(markdown: str, converter: MarkupConverter = ISSUE_CONVERTER) -> str:
    return ISSUE_BANNER + converter.convert(markdown)


def build_figma_deep_link(context: WorkItemContext) -> str | None:
    base = (context.figma_url or "").split("?", 1)[0].strip()
    if not base:
        file_key = str((context.file_context or {}).get("fileKey") or "").strip()
        if not file_key:
            return None
        base = f"{FIGMA_DESIGN_BASE}/{file_key}"

    frame: dict[str, Any] = context.first_frame or {}
    node_id = str(frame.get("id") or frame.get("nodeId") or "").strip()
    if not node_id:
        return base
    encoded = node_id.replace(":", "-").replace(";", "%3B")
    return f"{base}?node-id={encoded}"


def format_wiki_body(
    markdown: str,
    context: WorkItemContext,
    today: date | None = None,
    converter: MarkupConverter = WIKI_CONVERTER,
) -> str:
    stamp = (today or date.today()).isoformat()
    header = f"# Technical Design: {context.component_name}\n\n**Date:** {stamp}\n{WIKI_SOURCE_LINE}"
    link = build_figma_deep_link(context)
    if link:
        header += f"**Figma:** [Open in Figma]({link})\n"
    return f"{header}\n---\n\n{converter.convert(markdown)}"


def inject_related_work(body: str, issue_key: str, issue_url: str | None) -> str:
    target = issue_url or issue_key
    related = f"**Related Work:** [{issue_key}]({target})\n"
    if WIKI_SOURCE_LINE in body:
        return body.replace(WIKI_SOURCE_LINE, WIKI_SOURCE_LINE + related, 1)
    return f"{related}\n{body}"


def embed_wiki_image(body: str, filename: str) -> str:
    image = f"\n![Design Preview]({filename})\n"
    if "---\n\n" in body:
        return body.replace("---\n\n", f"---\n\n{image}\n", 1)
    return f"{image}\n{body}"


def generate_branch_name(component_name: str, prefix: str = "feature") -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", component_name.lower()).strip("-")
    return f"{prefix}/{slug or 'work-item'}"
