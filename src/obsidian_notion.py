"""Obsidian ↔ Notion sync server.

Converts Obsidian-flavored Markdown notes into Notion pages (properties plus
block children) and renders Notion pages back into Markdown. Exposed as MCP
tools:
- note.push: Create or replace a Notion page from a Markdown note
- note.pull: Render a Notion page as a Markdown note
- note.preview: Show the Notion blocks a note would produce (no network)

Token: Passed via --token-file <path> or a --config YAML file at startup.
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, ClassVar, Optional, Protocol, Sequence, Union

import httpx
import parsy as P
import yaml
from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode
from mcp.server.fastmcp import FastMCP
from mdit_py_plugins.front_matter import front_matter_plugin
from mdit_py_plugins.tasklists import tasklists_plugin
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger("obsidian-notion")

# Notion rejects rich_text content longer than this (UTF-16 code units)
NOTION_RICH_TEXT_LIMIT = 2000

# Maximum nesting depth mapped for lists, quotes and callouts
MAX_NESTING_DEPTH = 10

# Icons used for placeholders the Notion model cannot represent natively
DEFAULT_CALLOUT_ICON = "💡"
IMAGE_PLACEHOLDER_ICON = "🖼️"
DATAVIEW_PLACEHOLDER_ICON = "📊"

HIGHLIGHT_COLOR = "yellow_background"
PLAIN_TEXT_LANGUAGE = "plain text"

UNRESOLVED_LINK_STYLES = ("placeholder", "text", "skip")


# =============================================================================
# Errors
# =============================================================================


class TransformError(ValueError):
    """Input violates a structural contract of the document model."""


class FrontmatterError(ValueError):
    """Front-matter could not be parsed as a YAML mapping."""

    def __init__(self, message: str, line: int = 0):
        super().__init__(message)
        self.message = message
        self.line = line

    def __str__(self) -> str:
        if self.line > 0:
            return f"frontmatter error at line {self.line}: {self.message}"
        return f"frontmatter error: {self.message}"


class ConfigError(ValueError):
    """Configuration file is missing required values or has invalid ones."""


class NotionAPIError(RuntimeError):
    """A Notion API request failed.

    Attributes:
        status_code: HTTP status code, if a response was received.
        detail: Truncated response body.
        stage: For multi-step operations, the step that failed.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: str = "",
        stage: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail
        self.stage = stage

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"HTTP {self.status_code}")
        if self.stage:
            parts.append(f"during {self.stage}")
        if self.detail:
            parts.append(self.detail)
        return " - ".join(parts)


# =============================================================================
# Transform Configuration
# =============================================================================

# Callout type -> emoji. Several Obsidian synonyms share one icon.
DEFAULT_CALLOUT_ICONS = {
    "note": "💡",
    "abstract": "📋",
    "summary": "📋",
    "info": "ℹ️",
    "todo": "📝",
    "tip": "💡",
    "hint": "💡",
    "important": "❗",
    "success": "✅",
    "check": "✅",
    "done": "✅",
    "question": "❓",
    "help": "❓",
    "faq": "❓",
    "warning": "⚠️",
    "caution": "⚠️",
    "attention": "⚠️",
    "failure": "❌",
    "fail": "❌",
    "missing": "❌",
    "danger": "🔴",
    "error": "🔴",
    "bug": "🐛",
    "example": "📖",
    "quote": "💬",
    "cite": "💬",
}


@dataclass
class TransformConfig:
    """Options shared by the forward and reverse transformers.

    Read-only during a transform, so one instance may be shared by
    concurrent transforms of independent documents.
    """
    unresolved_link_style: str = "placeholder"  # placeholder, text, skip
    callout_icons: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CALLOUT_ICONS))
    flatten_headings: bool = True  # H4-H6 -> H3; otherwise bold paragraphs
    max_depth: int = MAX_NESTING_DEPTH


def default_transform_config() -> TransformConfig:
    """Return a fresh default configuration (never shared between callers)."""
    return TransformConfig()


# =============================================================================
# Document Tree (parsed Markdown)
# =============================================================================
# Closed set of node types produced by parse_note(). Block-level nodes own
# their children; inline nodes appear only inside Heading, Paragraph,
# TableCell and other inline containers.


@dataclass
class Text:
    content: str


@dataclass
class SoftBreak:
    pass


@dataclass
class HardBreak:
    pass


@dataclass
class Emphasis:
    """Emphasis span: level 1 is *italic*, level 2 is **bold**."""
    level: int
    children: list = field(default_factory=list)


@dataclass
class Strikethrough:
    children: list = field(default_factory=list)


@dataclass
class CodeSpan:
    content: str


@dataclass
class Link:
    url: str
    children: list = field(default_factory=list)
    title: str = ""


@dataclass
class AutoLink:
    url: str
    text: str = ""


@dataclass
class Image:
    url: str
    alt: str = ""
    title: str = ""


@dataclass
class RawInline:
    content: str


@dataclass
class WikiLink:
    """Obsidian [[target#heading|alias]] link, or ![[target]] embed."""
    target: str
    alias: str = ""
    heading: str = ""
    block: str = ""
    embed: bool = False

    @property
    def display(self) -> str:
        return self.alias or self.target


@dataclass
class TaskCheckbox:
    checked: bool = False


@dataclass
class InlineMath:
    expression: str


@dataclass
class Heading:
    level: int
    children: list = field(default_factory=list)


@dataclass
class Paragraph:
    children: list = field(default_factory=list)
    raw: str = ""  # Source text of the paragraph, before inline parsing


@dataclass
class ListItem:
    children: list = field(default_factory=list)


@dataclass
class ListBlock:
    ordered: bool = False
    items: list[ListItem] = field(default_factory=list)
    start: int = 1


@dataclass
class Blockquote:
    children: list = field(default_factory=list)


@dataclass
class FencedCode:
    info: str = ""
    content: str = ""

    @property
    def language(self) -> str:
        return self.info.split()[0].lower() if self.info.strip() else ""


@dataclass
class ThematicBreak:
    pass


@dataclass
class TableCell:
    children: list = field(default_factory=list)


@dataclass
class TableRow:
    cells: list[TableCell] = field(default_factory=list)


@dataclass
class Table:
    header: Optional[TableRow] = None
    rows: list[TableRow] = field(default_factory=list)


@dataclass
class UnknownNode:
    """Any parser node without a dedicated type (HTML blocks, etc.)."""
    kind: str
    children: list = field(default_factory=list)


@dataclass
class Document:
    children: list = field(default_factory=list)


InlineNode = Union[
    Text, SoftBreak, HardBreak, Emphasis, Strikethrough, CodeSpan, Link,
    AutoLink, Image, RawInline, WikiLink, TaskCheckbox, InlineMath, UnknownNode,
]
BlockNode = Union[
    Heading, Paragraph, ListBlock, ListItem, Blockquote, FencedCode,
    ThematicBreak, Table, UnknownNode,
]


@dataclass
class ParsedNote:
    """A parsed note: front-matter, tags and the body's document tree."""
    document: Document
    frontmatter: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    wikilinks: list[WikiLink] = field(default_factory=list)
    embeds: list[WikiLink] = field(default_factory=list)
    path: str = ""

    @property
    def title(self) -> str:
        """Title from front-matter, else the file name without extension."""
        title = self.frontmatter.get("title")
        if title:
            return str(title)
        if self.path:
            return Path(self.path).stem
        return ""


# =============================================================================
# Markdown Parser (markdown-it + Obsidian extensions)
# =============================================================================

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".svg", ".webp", ".avif"}

# #tag preceded by start/whitespace/punctuation; digit-only tags are ignored
HASHTAG_PATTERN = re.compile(r'(?<![\w#&/])#([\w][\w/-]*)')


def _create_markdown() -> MarkdownIt:
    """Create the CommonMark parser with the extensions Obsidian notes use."""
    return (
        MarkdownIt("commonmark")
        .enable("table")
        .enable("strikethrough")
        .use(front_matter_plugin)
        .use(tasklists_plugin)
    )


_markdown = _create_markdown()


def _wikilink_from_inner(inner: str, embed: bool) -> WikiLink:
    """Split the text between [[ and ]] into target, heading, block and alias."""
    target, _, alias = inner.partition("|")
    target, _, heading = target.partition("#")
    block = ""
    if heading.startswith("^"):
        block, heading = heading[1:], ""
    elif "^" in target:
        target, _, block = target.partition("^")
    return WikiLink(
        target=target.strip(),
        alias=alias.strip(),
        heading=heading.strip(),
        block=block.strip(),
        embed=embed,
    )


def _make_obsidian_text_parser():
    """Build the parser for Obsidian syntax that CommonMark leaves as text.

    markdown-it hands us literal text for [[wiki-links]], ![[embeds]] and
    $inline math$; this grammar splits such text into typed inline nodes.
    """
    link_inner = P.regex(r'[^\[\]\n]+')

    embed = (
        P.string('![[') >> link_inner << P.string(']]')
    ).map(lambda inner: _wikilink_from_inner(inner, embed=True))

    wikilink = (
        P.string('[[') >> link_inner << P.string(']]')
    ).map(lambda inner: _wikilink_from_inner(inner, embed=False))

    # $x$ with no whitespace just inside the delimiters
    inline_math = (
        P.string('$') >>
        P.regex(r'[^$\s](?:[^$\n]*[^$\s])?') <<
        P.string('$')
    ).map(lambda expr: InlineMath(expression=expr))

    literal_run = P.regex(r'[^!\[$]+').map(Text)
    special_fallback = P.any_char.map(Text)

    return (embed | wikilink | inline_math | literal_run | special_fallback).many()


_obsidian_text_parser = _make_obsidian_text_parser()


def parse_obsidian_text(content: str) -> list:
    """Split literal text into Text, WikiLink and InlineMath nodes."""
    if not content:
        return []
    try:
        nodes = _obsidian_text_parser.parse(content)
    except P.ParseError as e:
        logger.warning(f"Obsidian text parse error: {e}")
        return [Text(content)]

    merged: list = []
    for node in nodes:
        if isinstance(node, Text) and merged and isinstance(merged[-1], Text):
            merged[-1] = Text(merged[-1].content + node.content)
        else:
            merged.append(node)
    return merged


def _load_frontmatter(content: str) -> dict[str, Any]:
    """Parse front-matter YAML into a record with string keys."""
    if not content.strip():
        return {}
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        # +2: one for 1-indexing, one for the opening --- line
        line = mark.line + 2 if mark is not None else 0
        raise FrontmatterError(str(getattr(e, "problem", None) or e), line=line) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FrontmatterError(f"expected a mapping, got {type(data).__name__}")
    return {str(key): value for key, value in data.items()}


def _frontmatter_tags(frontmatter: dict[str, Any]) -> list[str]:
    """Tags declared in front-matter, as a list or comma/space separated string."""
    raw = frontmatter.get("tags", frontmatter.get("tag"))
    if raw is None:
        return []
    if isinstance(raw, str):
        items = re.split(r'[,\s]+', raw)
    elif isinstance(raw, (list, tuple)):
        items = [str(item) for item in raw if item is not None]
    else:
        items = [str(raw)]
    return [item.strip().lstrip("#") for item in items if item.strip().lstrip("#")]


def _merge_unique(*groups: Sequence[str]) -> list[str]:
    """Concatenate groups, dropping repeats while keeping first-seen order."""
    seen: set[str] = set()
    merged: list[str] = []
    for group in groups:
        for item in group:
            if item not in seen:
                seen.add(item)
                merged.append(item)
    return merged


class _TreeBuilder:
    """Converts markdown-it's syntax tree into the Document Tree node types."""

    def __init__(self):
        self.hashtags: list[str] = []
        self.wikilinks: list[WikiLink] = []
        self.embeds: list[WikiLink] = []

    def blocks(self, nodes: Sequence[SyntaxTreeNode]) -> list:
        result = []
        for node in nodes:
            converted = self.block(node)
            if converted is not None:
                result.append(converted)
        return result

    def block(self, node: SyntaxTreeNode):
        node_type = node.type

        if node_type == "front_matter":
            return None

        if node_type == "heading":
            return Heading(level=int(node.tag[1:]), children=self._inline_of(node))

        if node_type == "paragraph":
            inline = node.children[0] if node.children else None
            return Paragraph(
                children=self._inline_of(node),
                raw=inline.content if inline is not None else "",
            )

        if node_type in ("bullet_list", "ordered_list"):
            start = node.attrs.get("start", 1) if node_type == "ordered_list" else 1
            return ListBlock(
                ordered=node_type == "ordered_list",
                items=[ListItem(children=self.blocks(item.children)) for item in node.children],
                start=int(start),
            )

        if node_type == "blockquote":
            return Blockquote(children=self.blocks(node.children))

        if node_type in ("fence", "code_block"):
            return FencedCode(info=(node.info or "").strip(), content=node.content)

        if node_type == "hr":
            return ThematicBreak()

        if node_type == "table":
            return self._table(node)

        return UnknownNode(kind=node_type)

    def _table(self, node: SyntaxTreeNode) -> Table:
        table = Table()
        for section in node.children:
            for row in section.children:
                converted = TableRow(cells=[
                    TableCell(children=self._inline_of(cell)) for cell in row.children
                ])
                if section.type == "thead" and table.header is None:
                    table.header = converted
                else:
                    table.rows.append(converted)
        return table

    def _inline_of(self, node: SyntaxTreeNode) -> list:
        """Inline children of a container whose single child is an inline node."""
        if not node.children:
            return []
        inline = node.children[0]
        return self.inline(inline.children)

    def inline(self, nodes: Sequence[SyntaxTreeNode]) -> list:
        result: list = []
        strip_next = False
        for child in nodes:
            child_type = child.type

            if child_type == "text":
                content = child.content
                if strip_next:
                    content = content.lstrip()
                    strip_next = False
                result.extend(self._text(content))
            elif child_type == "softbreak":
                result.append(SoftBreak())
            elif child_type == "hardbreak":
                result.append(HardBreak())
            elif child_type == "em":
                result.append(Emphasis(level=1, children=self.inline(child.children)))
            elif child_type == "strong":
                result.append(Emphasis(level=2, children=self.inline(child.children)))
            elif child_type == "s":
                result.append(Strikethrough(children=self.inline(child.children)))
            elif child_type == "code_inline":
                result.append(CodeSpan(content=child.content))
            elif child_type == "link":
                href = str(child.attrs.get("href", ""))
                if child.markup in ("autolink", "linkify"):
                    result.append(AutoLink(url=href, text=_plain_text(self.inline(child.children))))
                else:
                    result.append(Link(
                        url=href,
                        children=self.inline(child.children),
                        title=str(child.attrs.get("title", "") or ""),
                    ))
            elif child_type == "image":
                alt = _plain_text(self.inline(child.children)) or child.content
                result.append(Image(
                    url=str(child.attrs.get("src", "")),
                    alt=alt,
                    title=str(child.attrs.get("title", "") or ""),
                ))
            elif child_type == "html_inline":
                if "task-list-item-checkbox" in child.content:
                    result.append(TaskCheckbox(checked='checked="checked"' in child.content))
                    strip_next = True
                else:
                    result.append(RawInline(content=child.content))
            else:
                result.append(UnknownNode(kind=child_type, children=self.inline(child.children)))
        return result

    def _text(self, content: str) -> list:
        nodes = parse_obsidian_text(content)
        for node in nodes:
            if isinstance(node, Text):
                for match in HASHTAG_PATTERN.finditer(node.content):
                    tag = match.group(1)
                    if not tag.isdigit():
                        self.hashtags.append(tag)
            elif isinstance(node, WikiLink):
                (self.embeds if node.embed else self.wikilinks).append(node)
        return nodes


def _plain_text(nodes: Sequence) -> str:
    """Concatenated visible text of inline nodes, without formatting."""
    parts = []
    for node in nodes:
        if isinstance(node, (Text, CodeSpan, RawInline)):
            parts.append(node.content)
        elif isinstance(node, (SoftBreak, HardBreak)):
            parts.append("\n")
        elif isinstance(node, InlineMath):
            parts.append(node.expression)
        elif isinstance(node, WikiLink):
            parts.append(node.display)
        elif isinstance(node, AutoLink):
            parts.append(node.text or node.url)
        elif isinstance(node, Image):
            parts.append(node.alt)
        elif hasattr(node, "children"):
            parts.append(_plain_text(node.children))
    return "".join(parts)


def parse_note(source: str, path: str = "") -> ParsedNote:
    """Parse an Obsidian note into front-matter, tags and a document tree.

    Args:
        source: Full note text, including any --- front-matter block.
        path: Vault-relative path, used for the fallback title.

    Returns:
        ParsedNote with the body tree (front-matter stripped).

    Raises:
        FrontmatterError: If the front-matter is not a valid YAML mapping.
    """
    tokens = _markdown.parse(source)

    frontmatter: dict[str, Any] = {}
    for token in tokens:
        if token.type == "front_matter":
            frontmatter = _load_frontmatter(token.content)
            break

    builder = _TreeBuilder()
    root = SyntaxTreeNode(tokens)
    document = Document(children=builder.blocks(root.children))

    return ParsedNote(
        document=document,
        frontmatter=frontmatter,
        tags=_merge_unique(_frontmatter_tags(frontmatter), builder.hashtags),
        wikilinks=builder.wikilinks,
        embeds=builder.embeds,
        path=path,
    )


# =============================================================================
# Notion Target Model
# =============================================================================


@dataclass
class Annotations:
    """Text styling of one rich text run."""
    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    underline: bool = False
    code: bool = False
    color: str = "default"

    def copy(self) -> "Annotations":
        """Independent copy, so derived runs never share styling state."""
        return replace(self)

    def to_notion(self) -> dict:
        result = {}
        for name in ("bold", "italic", "strikethrough", "underline", "code"):
            if getattr(self, name):
                result[name] = True
        if self.color != "default":
            result["color"] = self.color
        return result

    @classmethod
    def from_notion(cls, data: Optional[dict]) -> "Annotations":
        data = data or {}
        return cls(
            bold=bool(data.get("bold")),
            italic=bool(data.get("italic")),
            strikethrough=bool(data.get("strikethrough")),
            underline=bool(data.get("underline")),
            code=bool(data.get("code")),
            color=data.get("color") or "default",
        )


@dataclass
class Mention:
    """Reference run payload: a page, a date or a user."""
    type: str  # page, date, user
    id: str = ""
    start: str = ""
    end: str = ""

    def to_notion(self) -> dict:
        if self.type == "date":
            value = {"start": self.start}
            if self.end:
                value["end"] = self.end
            return {"type": "date", "date": value}
        return {"type": self.type, self.type: {"id": self.id}}


@dataclass
class RichText:
    """One styled run of text.

    A run is plain text (optionally linked), a mention, or an equation.
    For mentions `content` holds the display text; for equations it holds
    the expression.
    """
    content: str
    link: Optional[str] = None
    annotations: Annotations = field(default_factory=Annotations)
    mention: Optional[Mention] = None
    equation: Optional[str] = None

    @property
    def type(self) -> str:
        if self.mention is not None:
            return "mention"
        if self.equation is not None:
            return "equation"
        return "text"

    def to_notion(self) -> dict:
        if self.mention is not None:
            item = {"type": "mention", "mention": self.mention.to_notion()}
        elif self.equation is not None:
            item = {"type": "equation", "equation": {"expression": self.equation}}
        else:
            text_obj: dict[str, Any] = {"content": self.content}
            if self.link:
                text_obj["link"] = {"url": self.link}
            item = {"type": "text", "text": text_obj}
        annotations = self.annotations.to_notion()
        if annotations:
            item["annotations"] = annotations
        return item


def rich_text_from_notion(items: Optional[list[dict]]) -> list[RichText]:
    """Decode a Notion rich_text array."""
    runs = []
    for item in items or []:
        item_type = item.get("type", "text")
        annotations = Annotations.from_notion(item.get("annotations"))
        plain = item.get("plain_text")

        if item_type == "mention":
            mention = item.get("mention", {})
            mention_type = mention.get("type", "")
            payload = mention.get(mention_type) or {}
            if mention_type == "date":
                value = Mention("date", start=payload.get("start") or "", end=payload.get("end") or "")
            else:
                value = Mention(mention_type, id=payload.get("id", ""))
            runs.append(RichText(content=plain or "", annotations=annotations, mention=value))
        elif item_type == "equation":
            expression = item.get("equation", {}).get("expression", "")
            runs.append(RichText(content=expression, annotations=annotations, equation=expression))
        else:
            text_obj = item.get("text", {})
            link = (text_obj.get("link") or {}).get("url") or item.get("href")
            content = text_obj.get("content", plain if plain is not None else "")
            runs.append(RichText(content=content, link=link, annotations=annotations))
    return runs


def _utf16_len(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


def _find_split_point(text: str, limit: int) -> int:
    """Index to cut `text` so the head fits in `limit` UTF-16 units.

    Prefers cutting just after the last newline inside the window; never
    cuts inside a character.
    """
    units = 0
    end = 0
    for index, char in enumerate(text):
        width = 2 if ord(char) > 0xFFFF else 1
        if units + width > limit:
            break
        units += width
        end = index + 1
    newline = text.rfind("\n", 0, end)
    if newline > 0:
        return newline + 1
    return max(end, 1)


def split_text(text: str, limit: int = NOTION_RICH_TEXT_LIMIT) -> list[str]:
    """Split text into segments of at most `limit` units each.

    Concatenating the segments always yields the input.
    """
    if _utf16_len(text) <= limit:
        return [text]
    segments = []
    remaining = text
    while remaining:
        if _utf16_len(remaining) <= limit:
            segments.append(remaining)
            break
        cut = _find_split_point(remaining, limit)
        segments.append(remaining[:cut])
        remaining = remaining[cut:]
    return segments


def split_rich_text(run: RichText, limit: int = NOTION_RICH_TEXT_LIMIT) -> list[RichText]:
    """Split an oversize text run into runs with identical styling and link."""
    if run.type != "text":
        return [run]
    segments = split_text(run.content, limit)
    if len(segments) == 1:
        return [run]
    return [
        RichText(content=segment, link=run.link, annotations=run.annotations.copy())
        for segment in segments
    ]


def split_code_content(code: str, limit: int = NOTION_RICH_TEXT_LIMIT) -> list[RichText]:
    """Plain runs carrying a code body, each within the content limit."""
    return [RichText(content=segment) for segment in split_text(code, limit)]


def _merge_adjacent_runs(runs: list[RichText]) -> list[RichText]:
    """Merge consecutive plain text runs with the same styling and link."""
    merged: list[RichText] = []
    for run in runs:
        if (
            merged
            and run.type == "text"
            and merged[-1].type == "text"
            and merged[-1].annotations == run.annotations
            and merged[-1].link == run.link
        ):
            last = merged[-1]
            merged[-1] = RichText(
                content=last.content + run.content,
                link=last.link,
                annotations=last.annotations.copy(),
            )
        else:
            merged.append(run)
    return merged


def enforce_content_limit(runs: list[RichText], limit: int = NOTION_RICH_TEXT_LIMIT) -> list[RichText]:
    result = []
    for run in runs:
        result.extend(split_rich_text(run, limit))
    return result


# -----------------------------------------------------------------------------
# Properties
# -----------------------------------------------------------------------------


class PropertyType(str, Enum):
    TITLE = "title"
    RICH_TEXT = "rich_text"
    NUMBER = "number"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    DATE = "date"
    CHECKBOX = "checkbox"
    URL = "url"
    EMAIL = "email"
    PHONE = "phone_number"


@dataclass
class DateValue:
    start: str
    end: Optional[str] = None


@dataclass
class PropertyValue:
    """Typed page property value.

    `value` holds list[RichText] for title/rich_text, a number, an option
    name, a list of option names, a DateValue, a bool, or a string for
    url/email/phone.
    """
    type: PropertyType
    value: Any

    def to_notion(self) -> dict:
        kind = self.type
        if kind in (PropertyType.TITLE, PropertyType.RICH_TEXT):
            return {kind.value: [run.to_notion() for run in self.value]}
        if kind == PropertyType.SELECT:
            return {"select": {"name": self.value} if self.value else None}
        if kind == PropertyType.MULTI_SELECT:
            return {"multi_select": [{"name": name} for name in self.value]}
        if kind == PropertyType.DATE:
            if self.value is None:
                return {"date": None}
            date_obj = {"start": self.value.start}
            if self.value.end:
                date_obj["end"] = self.value.end
            return {"date": date_obj}
        return {kind.value: self.value}

    def to_python(self) -> Any:
        """Plain value for front-matter, or None when the property is empty."""
        kind = self.type
        if kind in (PropertyType.TITLE, PropertyType.RICH_TEXT):
            text = "".join(run.content for run in self.value)
            return text or None
        if kind == PropertyType.DATE:
            return self.value.start if self.value is not None else None
        if kind == PropertyType.MULTI_SELECT:
            return list(self.value)
        if kind == PropertyType.CHECKBOX:
            return bool(self.value)
        if kind in (PropertyType.SELECT, PropertyType.URL, PropertyType.EMAIL, PropertyType.PHONE):
            return self.value or None
        return self.value


def property_from_notion(data: dict) -> Optional[PropertyValue]:
    """Decode one Notion page property; None for types this model lacks."""
    raw_type = data.get("type", "")
    try:
        kind = PropertyType(raw_type)
    except ValueError:
        return None
    payload = data.get(raw_type)

    if kind in (PropertyType.TITLE, PropertyType.RICH_TEXT):
        return PropertyValue(kind, rich_text_from_notion(payload))
    if kind == PropertyType.SELECT:
        return PropertyValue(kind, (payload or {}).get("name"))
    if kind == PropertyType.MULTI_SELECT:
        return PropertyValue(kind, [option.get("name", "") for option in payload or []])
    if kind == PropertyType.DATE:
        if not payload:
            return PropertyValue(kind, None)
        return PropertyValue(kind, DateValue(start=payload.get("start", ""), end=payload.get("end")))
    if kind == PropertyType.CHECKBOX:
        return PropertyValue(kind, bool(payload))
    return PropertyValue(kind, payload)


class PropertySet(dict):
    """Notion property name -> PropertyValue."""

    def to_notion(self) -> dict:
        return {name: prop.to_notion() for name, prop in self.items()}

    def for_page_parent(self) -> "PropertySet":
        """Keep only the title property, keyed "title".

        A page whose parent is another page (not a database) accepts only
        a title property.
        """
        result = PropertySet()
        for prop in self.values():
            if prop.type == PropertyType.TITLE:
                result["title"] = prop
                break
        return result


# -----------------------------------------------------------------------------
# Blocks
# -----------------------------------------------------------------------------


class BlockType(str, Enum):
    PARAGRAPH = "paragraph"
    HEADING_1 = "heading_1"
    HEADING_2 = "heading_2"
    HEADING_3 = "heading_3"
    BULLETED_LIST_ITEM = "bulleted_list_item"
    NUMBERED_LIST_ITEM = "numbered_list_item"
    TO_DO = "to_do"
    TOGGLE = "toggle"
    QUOTE = "quote"
    CALLOUT = "callout"
    CODE = "code"
    EQUATION = "equation"
    DIVIDER = "divider"
    IMAGE = "image"
    BOOKMARK = "bookmark"
    EMBED = "embed"
    VIDEO = "video"
    FILE = "file"
    PDF = "pdf"
    TABLE = "table"
    TABLE_ROW = "table_row"
    COLUMN_LIST = "column_list"
    COLUMN = "column"
    SYNCED_BLOCK = "synced_block"
    UNSUPPORTED = "unsupported"


class _Block:
    block_type: ClassVar[BlockType]

    @property
    def type(self) -> BlockType:
        return self.block_type


@dataclass
class ParagraphBlock(_Block):
    rich_text: list[RichText] = field(default_factory=list)
    children: list = field(default_factory=list)
    color: str = "default"
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.PARAGRAPH


@dataclass
class HeadingBlock(_Block):
    level: int = 1  # 1..3
    rich_text: list[RichText] = field(default_factory=list)
    color: str = "default"
    id: Optional[str] = None

    @property
    def type(self) -> BlockType:
        return BlockType(f"heading_{self.level}")


@dataclass
class BulletedListItemBlock(_Block):
    rich_text: list[RichText] = field(default_factory=list)
    children: list = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.BULLETED_LIST_ITEM


@dataclass
class NumberedListItemBlock(_Block):
    rich_text: list[RichText] = field(default_factory=list)
    children: list = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.NUMBERED_LIST_ITEM


@dataclass
class ToDoBlock(_Block):
    rich_text: list[RichText] = field(default_factory=list)
    checked: bool = False
    children: list = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.TO_DO


@dataclass
class ToggleBlock(_Block):
    rich_text: list[RichText] = field(default_factory=list)
    children: list = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.TOGGLE


@dataclass
class QuoteBlock(_Block):
    rich_text: list[RichText] = field(default_factory=list)
    children: list = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.QUOTE


@dataclass
class CalloutBlock(_Block):
    rich_text: list[RichText] = field(default_factory=list)
    icon: str = DEFAULT_CALLOUT_ICON
    color: str = "default"
    children: list = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.CALLOUT


@dataclass
class CodeBlock(_Block):
    rich_text: list[RichText] = field(default_factory=list)
    language: str = PLAIN_TEXT_LANGUAGE
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.CODE

    @property
    def code(self) -> str:
        return "".join(run.content for run in self.rich_text)


@dataclass
class EquationBlock(_Block):
    expression: str = ""
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.EQUATION


@dataclass
class DividerBlock(_Block):
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.DIVIDER


@dataclass
class ImageBlock(_Block):
    url: str = ""
    caption: list[RichText] = field(default_factory=list)
    external: bool = True
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.IMAGE


@dataclass
class BookmarkBlock(_Block):
    url: str = ""
    caption: list[RichText] = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.BOOKMARK


@dataclass
class EmbedBlock(_Block):
    url: str = ""
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.EMBED


@dataclass
class VideoBlock(_Block):
    url: str = ""
    external: bool = True
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.VIDEO


@dataclass
class FileBlock(_Block):
    url: str = ""
    caption: list[RichText] = field(default_factory=list)
    name: str = ""
    external: bool = True
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.FILE


@dataclass
class PdfBlock(_Block):
    url: str = ""
    external: bool = True
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.PDF


@dataclass
class TableRowBlock(_Block):
    cells: list[list[RichText]] = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.TABLE_ROW


@dataclass
class TableBlock(_Block):
    """Table whose children are exactly its rows.

    Every row has `width` cells; the first row is the header row when
    `has_column_header` is set.
    """
    width: int = 1
    has_column_header: bool = False
    has_row_header: bool = False
    children: list[TableRowBlock] = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.TABLE


@dataclass
class ColumnListBlock(_Block):
    children: list = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.COLUMN_LIST


@dataclass
class ColumnBlock(_Block):
    children: list = field(default_factory=list)
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.COLUMN


@dataclass
class SyncedBlock(_Block):
    children: list = field(default_factory=list)
    synced_from: Optional[str] = None
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.SYNCED_BLOCK


@dataclass
class UnsupportedBlock(_Block):
    """A Notion block kind this model does not cover (kept by name)."""
    kind: str = ""
    id: Optional[str] = None
    block_type: ClassVar[BlockType] = BlockType.UNSUPPORTED


Block = Union[
    ParagraphBlock, HeadingBlock, BulletedListItemBlock, NumberedListItemBlock,
    ToDoBlock, ToggleBlock, QuoteBlock, CalloutBlock, CodeBlock, EquationBlock,
    DividerBlock, ImageBlock, BookmarkBlock, EmbedBlock, VideoBlock, FileBlock,
    PdfBlock, TableBlock, TableRowBlock, ColumnListBlock, ColumnBlock,
    SyncedBlock, UnsupportedBlock,
]


@dataclass
class NotionPage:
    """Output of the forward transform: page properties plus body blocks."""
    properties: PropertySet = field(default_factory=PropertySet)
    children: list = field(default_factory=list)
    icon: Optional[str] = None

    @property
    def title(self) -> str:
        for prop in self.properties.values():
            if prop.type == PropertyType.TITLE:
                return "".join(run.content for run in prop.value)
        return ""


# =============================================================================
# Wire Codec (Notion JSON <-> blocks)
# =============================================================================


def _rich_text_json(runs: list[RichText]) -> list[dict]:
    return [run.to_notion() for run in runs]


def _file_object(url: str, external: bool) -> dict:
    if external:
        return {"type": "external", "external": {"url": url}}
    return {"type": "file", "file": {"url": url}}


def _with_children(payload: dict, children: list) -> dict:
    if children:
        payload["children"] = [block_to_notion(child) for child in children]
    return payload


_BLOCK_ENCODERS: dict[BlockType, Callable[[Any], dict]] = {
    BlockType.PARAGRAPH: lambda b: _with_children(
        {"rich_text": _rich_text_json(b.rich_text), "color": b.color}, b.children),
    BlockType.HEADING_1: lambda b: {"rich_text": _rich_text_json(b.rich_text), "color": b.color},
    BlockType.HEADING_2: lambda b: {"rich_text": _rich_text_json(b.rich_text), "color": b.color},
    BlockType.HEADING_3: lambda b: {"rich_text": _rich_text_json(b.rich_text), "color": b.color},
    BlockType.BULLETED_LIST_ITEM: lambda b: _with_children(
        {"rich_text": _rich_text_json(b.rich_text)}, b.children),
    BlockType.NUMBERED_LIST_ITEM: lambda b: _with_children(
        {"rich_text": _rich_text_json(b.rich_text)}, b.children),
    BlockType.TO_DO: lambda b: _with_children(
        {"rich_text": _rich_text_json(b.rich_text), "checked": b.checked}, b.children),
    BlockType.TOGGLE: lambda b: _with_children(
        {"rich_text": _rich_text_json(b.rich_text)}, b.children),
    BlockType.QUOTE: lambda b: _with_children(
        {"rich_text": _rich_text_json(b.rich_text)}, b.children),
    BlockType.CALLOUT: lambda b: _with_children({
        "rich_text": _rich_text_json(b.rich_text),
        "icon": {"type": "emoji", "emoji": b.icon},
        "color": b.color,
    }, b.children),
    BlockType.CODE: lambda b: {"rich_text": _rich_text_json(b.rich_text), "language": b.language},
    BlockType.EQUATION: lambda b: {"expression": b.expression},
    BlockType.DIVIDER: lambda b: {},
    BlockType.IMAGE: lambda b: {**_file_object(b.url, b.external), "caption": _rich_text_json(b.caption)},
    BlockType.BOOKMARK: lambda b: {"url": b.url, "caption": _rich_text_json(b.caption)},
    BlockType.EMBED: lambda b: {"url": b.url},
    BlockType.VIDEO: lambda b: _file_object(b.url, b.external),
    BlockType.FILE: lambda b: {
        **_file_object(b.url, b.external),
        "caption": _rich_text_json(b.caption),
        **({"name": b.name} if b.name else {}),
    },
    BlockType.PDF: lambda b: _file_object(b.url, b.external),
    BlockType.TABLE: lambda b: {
        "table_width": b.width,
        "has_column_header": b.has_column_header,
        "has_row_header": b.has_row_header,
        "children": [block_to_notion(row) for row in b.children],
    },
    BlockType.TABLE_ROW: lambda b: {"cells": [_rich_text_json(cell) for cell in b.cells]},
    BlockType.COLUMN_LIST: lambda b: _with_children({}, b.children),
    BlockType.COLUMN: lambda b: _with_children({}, b.children),
    BlockType.SYNCED_BLOCK: lambda b: _with_children({
        "synced_from": {"type": "block_id", "block_id": b.synced_from} if b.synced_from else None,
    }, b.children),
}


def block_to_notion(block: Block) -> dict:
    """Encode a block (and its children) as a Notion append/create payload.

    Raises:
        TransformError: For UnsupportedBlock, which cannot be written back.
    """
    encoder = _BLOCK_ENCODERS.get(block.type)
    if encoder is None:
        raise TransformError(f"cannot encode block of kind {getattr(block, 'kind', block.type.value)!r}")
    kind = block.type.value
    if kind in CHILD_BEARING_TYPES and block.children is None:
        raise TransformError(f"{kind} block has children=None; use an empty list")
    return {"object": "block", "type": kind, kind: encoder(block)}


# Kinds whose payload may legitimately carry children
CHILD_BEARING_TYPES = {
    "paragraph", "bulleted_list_item", "numbered_list_item", "to_do", "toggle",
    "quote", "callout", "table", "column_list", "column", "synced_block",
}


def _file_url(payload: dict) -> tuple[str, bool]:
    source = payload.get("type", "external")
    return (payload.get(source) or {}).get("url", ""), source == "external"


def _decode_heading(level: int) -> Callable[[dict, list], Block]:
    return lambda p, c: HeadingBlock(
        level=level, rich_text=rich_text_from_notion(p.get("rich_text")),
        color=p.get("color", "default"))


def _decode_table(payload: dict, children: list) -> TableBlock:
    rows = []
    for row in children:
        if not isinstance(row, TableRowBlock):
            raise TransformError(f"table child must be a table_row, got {row.type.value}")
        rows.append(row)
    return TableBlock(
        width=payload.get("table_width", max((len(r.cells) for r in rows), default=1)),
        has_column_header=bool(payload.get("has_column_header")),
        has_row_header=bool(payload.get("has_row_header")),
        children=rows,
    )


def _decode_synced(payload: dict, children: list) -> SyncedBlock:
    synced_from = payload.get("synced_from") or {}
    return SyncedBlock(children=children, synced_from=synced_from.get("block_id"))


_BLOCK_DECODERS: dict[BlockType, Callable[[dict, list], Block]] = {
    BlockType.PARAGRAPH: lambda p, c: ParagraphBlock(
        rich_text=rich_text_from_notion(p.get("rich_text")), children=c, color=p.get("color", "default")),
    BlockType.HEADING_1: _decode_heading(1),
    BlockType.HEADING_2: _decode_heading(2),
    BlockType.HEADING_3: _decode_heading(3),
    BlockType.BULLETED_LIST_ITEM: lambda p, c: BulletedListItemBlock(
        rich_text=rich_text_from_notion(p.get("rich_text")), children=c),
    BlockType.NUMBERED_LIST_ITEM: lambda p, c: NumberedListItemBlock(
        rich_text=rich_text_from_notion(p.get("rich_text")), children=c),
    BlockType.TO_DO: lambda p, c: ToDoBlock(
        rich_text=rich_text_from_notion(p.get("rich_text")), checked=bool(p.get("checked")), children=c),
    BlockType.TOGGLE: lambda p, c: ToggleBlock(
        rich_text=rich_text_from_notion(p.get("rich_text")), children=c),
    BlockType.QUOTE: lambda p, c: QuoteBlock(
        rich_text=rich_text_from_notion(p.get("rich_text")), children=c),
    BlockType.CALLOUT: lambda p, c: CalloutBlock(
        rich_text=rich_text_from_notion(p.get("rich_text")),
        icon=(p.get("icon") or {}).get("emoji") or DEFAULT_CALLOUT_ICON,
        color=p.get("color", "default"),
        children=c),
    BlockType.CODE: lambda p, c: CodeBlock(
        rich_text=rich_text_from_notion(p.get("rich_text")), language=p.get("language") or PLAIN_TEXT_LANGUAGE),
    BlockType.EQUATION: lambda p, c: EquationBlock(expression=p.get("expression", "")),
    BlockType.DIVIDER: lambda p, c: DividerBlock(),
    BlockType.IMAGE: lambda p, c: ImageBlock(
        _file_url(p)[0], caption=rich_text_from_notion(p.get("caption")), external=_file_url(p)[1]),
    BlockType.BOOKMARK: lambda p, c: BookmarkBlock(
        url=p.get("url", ""), caption=rich_text_from_notion(p.get("caption"))),
    BlockType.EMBED: lambda p, c: EmbedBlock(url=p.get("url", "")),
    BlockType.VIDEO: lambda p, c: VideoBlock(*_file_url(p)),
    BlockType.FILE: lambda p, c: FileBlock(
        _file_url(p)[0], caption=rich_text_from_notion(p.get("caption")),
        name=p.get("name", ""), external=_file_url(p)[1]),
    BlockType.PDF: lambda p, c: PdfBlock(*_file_url(p)),
    BlockType.TABLE: _decode_table,
    BlockType.TABLE_ROW: lambda p, c: TableRowBlock(
        cells=[rich_text_from_notion(cell) for cell in p.get("cells", [])]),
    BlockType.COLUMN_LIST: lambda p, c: ColumnListBlock(children=c),
    BlockType.COLUMN: lambda p, c: ColumnBlock(children=c),
    BlockType.SYNCED_BLOCK: _decode_synced,
    BlockType.UNSUPPORTED: lambda p, c: UnsupportedBlock(kind="unsupported"),
}


def block_from_notion(data: dict) -> Block:
    """Decode a Notion block object, including fetched `_children`.

    Kinds outside BlockType decode to UnsupportedBlock.

    Raises:
        TransformError: If a kind that cannot have children carries some.
    """
    kind = data.get("type", "")
    payload = data.get(kind) or {}
    raw_children = data.get("_children") or payload.get("children") or []

    try:
        block_type = BlockType(kind)
    except ValueError:
        return UnsupportedBlock(kind=kind or "unknown", id=data.get("id"))

    if raw_children and kind not in CHILD_BEARING_TYPES:
        raise TransformError(f"block kind {kind!r} cannot have children")

    children = [block_from_notion(child) for child in raw_children]
    block = _BLOCK_DECODERS[block_type](payload, children)
    block.id = data.get("id")
    return block


# =============================================================================
# Cross-Reference Resolution
# =============================================================================


class LinkResolver(Protocol):
    """Maps note names to Notion page IDs and back."""

    def resolve(self, target: str) -> tuple[str, bool]:
        """Return (page_id, found) for a wiki-link target."""
        ...

    def lookup_path(self, page_id: str) -> tuple[str, bool]:
        """Return (note_path, found) for a Notion page ID."""
        ...


class DictLinkResolver:
    """In-memory resolver backed by a note-name -> page-ID mapping.

    Names match case-insensitively and with or without a ".md" suffix.
    Page IDs match with or without dashes.
    """

    def __init__(self, links: Optional[dict[str, str]] = None):
        self._by_name: dict[str, str] = {}
        self._by_id: dict[str, str] = {}
        for name, page_id in (links or {}).items():
            self.add(name, page_id)

    @staticmethod
    def _name_key(name: str) -> str:
        name = name.strip()
        if name.lower().endswith(".md"):
            name = name[:-3]
        return name.lower()

    @staticmethod
    def _id_key(page_id: str) -> str:
        return page_id.replace("-", "").lower()

    def add(self, name: str, page_id: str) -> None:
        self._by_name[self._name_key(name)] = page_id
        self._by_id.setdefault(self._id_key(page_id), name[:-3] if name.lower().endswith(".md") else name)

    def resolve(self, target: str) -> tuple[str, bool]:
        page_id = self._by_name.get(self._name_key(target))
        return (page_id, True) if page_id else ("", False)

    def lookup_path(self, page_id: str) -> tuple[str, bool]:
        name = self._by_id.get(self._id_key(page_id))
        return (name, True) if name else ("", False)


def is_local_path(url: str) -> bool:
    """True if an image/link target refers to a file rather than a web resource."""
    if url.startswith("data:"):
        return False
    if url.startswith("file://"):
        return True
    return "://" not in url


def _is_web_url(url: str) -> bool:
    return bool(re.match(r'^(https?://|mailto:)', url, re.IGNORECASE))


# =============================================================================
# Rich Text Composer (inline nodes -> rich text runs)
# =============================================================================

HIGHLIGHT_PATTERN = re.compile(r'==([^=\n](?:[^\n]*?[^=\n])??)==')


class RichTextComposer:
    """Flattens inline Document Tree nodes into styled rich text runs.

    Styling is inherited downward: each nested span copies the inherited
    annotations before adding its own, so sibling runs never share state.
    """

    def __init__(
        self,
        resolver: Optional[LinkResolver] = None,
        config: Optional[TransformConfig] = None
    ):
        self.resolver = resolver
        self.config = config or default_transform_config()

    def compose(self, node, inherited: Optional[Annotations] = None) -> list[RichText]:
        """Compose one inline node into runs, each within the content limit."""
        annotations = inherited if inherited is not None else Annotations()

        if isinstance(node, Text):
            return enforce_content_limit(self._split_highlights(node.content, annotations))

        if isinstance(node, SoftBreak):
            return [RichText(content=" ", annotations=annotations.copy())]

        if isinstance(node, HardBreak):
            return [RichText(content="\n", annotations=annotations.copy())]

        if isinstance(node, Emphasis):
            styled = annotations.copy()
            if node.level >= 2:
                styled.bold = True
            else:
                styled.italic = True
            return self.compose_all(node.children, styled, merge=False)

        if isinstance(node, Strikethrough):
            styled = annotations.copy()
            styled.strikethrough = True
            return self.compose_all(node.children, styled, merge=False)

        if isinstance(node, CodeSpan):
            styled = annotations.copy()
            styled.code = True
            return enforce_content_limit([RichText(content=node.content, annotations=styled)])

        if isinstance(node, Link):
            runs = self.compose_all(node.children, annotations, merge=False)
            if not runs:
                runs = [RichText(content=node.url, annotations=annotations.copy())]
            if _is_web_url(node.url):
                for run in runs:
                    if run.type == "text":
                        run.link = node.url
            return runs

        if isinstance(node, AutoLink):
            link = node.url if _is_web_url(node.url) else None
            return [RichText(content=node.text or node.url, link=link, annotations=annotations.copy())]

        if isinstance(node, Image):
            link = node.url if _is_web_url(node.url) else None
            return [RichText(content=node.alt or node.url, link=link, annotations=annotations.copy())]

        if isinstance(node, RawInline):
            return [RichText(content=node.content, annotations=annotations.copy())]

        if isinstance(node, WikiLink):
            return self._compose_wikilink(node, annotations)

        if isinstance(node, InlineMath):
            return [RichText(content=node.expression, equation=node.expression, annotations=annotations.copy())]

        if isinstance(node, TaskCheckbox):
            return []

        children = getattr(node, "children", None) or []
        return self.compose_all(children, annotations, merge=False)

    def compose_all(
        self,
        nodes: Sequence,
        inherited: Optional[Annotations] = None,
        merge: bool = True
    ) -> list[RichText]:
        """Compose a sequence of inline nodes.

        Args:
            nodes: Inline nodes, in document order.
            inherited: Annotations applied to every run.
            merge: Merge adjacent runs with identical styling.

        Returns:
            Runs whose concatenated text is the nodes' visible text.
        """
        runs: list[RichText] = []
        for node in nodes:
            runs.extend(self.compose(node, inherited))
        if merge:
            runs = enforce_content_limit(_merge_adjacent_runs(runs))
        return runs

    def _split_highlights(self, content: str, annotations: Annotations) -> list[RichText]:
        """Split ==highlighted== spans into yellow-background runs."""
        runs = []
        position = 0
        for match in HIGHLIGHT_PATTERN.finditer(content):
            if match.start() > position:
                runs.append(RichText(content=content[position:match.start()], annotations=annotations.copy()))
            highlighted = annotations.copy()
            highlighted.color = HIGHLIGHT_COLOR
            runs.append(RichText(content=match.group(1), annotations=highlighted))
            position = match.end()
        if position < len(content) or not runs:
            runs.append(RichText(content=content[position:], annotations=annotations.copy()))
        return runs

    def _compose_wikilink(self, link: WikiLink, annotations: Annotations) -> list[RichText]:
        display = link.display
        if self.resolver is not None:
            page_id, found = self.resolver.resolve(link.target)
            if found:
                return [RichText(
                    content=display,
                    annotations=annotations.copy(),
                    mention=Mention("page", id=page_id),
                )]

        style = self.config.unresolved_link_style
        if style == "skip":
            return []
        if style == "text":
            return [RichText(content=display, annotations=annotations.copy())]
        return [RichText(content=f"[[{display}]]", annotations=Annotations(color="red"))]


# =============================================================================
# Block Mapper (Document Tree -> Notion blocks)
# =============================================================================

CALLOUT_PATTERN = re.compile(r'^\[!(\w+)\]([+-])?(.*)$')

# $$...$$ with no inner $$, i.e. one display equation filling the paragraph
DISPLAY_MATH_PATTERN = re.compile(r'\$\$((?:(?!\$\$).)+)\$\$', re.DOTALL)

NOTION_LANGUAGES = {
    "abap", "arduino", "bash", "basic", "c", "clojure", "coffeescript", "c++",
    "c#", "css", "dart", "diff", "docker", "elixir", "elm", "erlang", "flow",
    "fortran", "f#", "gherkin", "glsl", "go", "graphql", "groovy", "haskell",
    "html", "java", "javascript", "json", "julia", "kotlin", "latex", "less",
    "lisp", "livescript", "lua", "makefile", "markdown", "markup", "matlab",
    "mermaid", "nix", "objective-c", "ocaml", "pascal", "perl", "php",
    "plain text", "powershell", "prolog", "protobuf", "python", "r", "reason",
    "ruby", "rust", "sass", "scala", "scheme", "scss", "shell", "sql", "swift",
    "typescript", "vb.net", "verilog", "vhdl", "visual basic", "webassembly",
    "xml", "yaml", "java/c/c++/c#",
}

LANGUAGE_ALIASES = {
    "sh": "shell",
    "zsh": "shell",
    "console": "shell",
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "python3": "python",
    "rb": "ruby",
    "rs": "rust",
    "golang": "go",
    "cpp": "c++",
    "cc": "c++",
    "cs": "c#",
    "csharp": "c#",
    "fsharp": "f#",
    "kt": "kotlin",
    "yml": "yaml",
    "md": "markdown",
    "dockerfile": "docker",
    "tex": "latex",
    "ps1": "powershell",
    "objc": "objective-c",
    "text": PLAIN_TEXT_LANGUAGE,
    "txt": PLAIN_TEXT_LANGUAGE,
    "plaintext": PLAIN_TEXT_LANGUAGE,
}


def normalize_language(language: str) -> str:
    """Map a fence info language to a Notion code language."""
    language = language.strip().lower()
    language = LANGUAGE_ALIASES.get(language, language)
    return language if language in NOTION_LANGUAGES else PLAIN_TEXT_LANGUAGE


def display_math_expression(paragraph: Paragraph) -> Optional[str]:
    """Expression of a paragraph consisting solely of $$...$$, else None."""
    match = DISPLAY_MATH_PATTERN.fullmatch(paragraph.raw.strip())
    if not match:
        return None
    expression = match.group(1).strip()
    return expression or None


def _is_image_target(target: str) -> bool:
    return Path(target).suffix.lower() in IMAGE_EXTENSIONS


def _standalone_image(paragraph: Paragraph):
    """The Image or image embed that is the paragraph's only content, if any."""
    meaningful = [
        node for node in paragraph.children
        if not isinstance(node, (SoftBreak, HardBreak))
        and not (isinstance(node, Text) and not node.content.strip())
    ]
    if len(meaningful) != 1:
        return None
    node = meaningful[0]
    if isinstance(node, Image):
        return node
    if isinstance(node, WikiLink) and node.embed and _is_image_target(node.target):
        return node
    return None


def _split_first_line(nodes: Sequence) -> tuple[list, list]:
    """Split inline nodes at the first line break (the break is dropped)."""
    for index, node in enumerate(nodes):
        if isinstance(node, (SoftBreak, HardBreak)):
            return list(nodes[:index]), list(nodes[index + 1:])
    return list(nodes), []


class Transformer:
    """Forward transformer: parsed Obsidian note -> Notion page.

    Pure with respect to the input tree; link lookups go through the
    resolver. Nesting deeper than `config.max_depth` is dropped with a
    warning.
    """

    def __init__(
        self,
        resolver: Optional[LinkResolver] = None,
        config: Optional[TransformConfig] = None,
        property_mapper: Optional["PropertyMapper"] = None
    ):
        self.config = config or default_transform_config()
        self.resolver = resolver
        self.composer = RichTextComposer(resolver, self.config)
        self.property_mapper = property_mapper or PropertyMapper()
        self._handlers: dict[type, Callable[[Any, int], list]] = {
            Heading: self._map_heading,
            Paragraph: self._map_paragraph,
            ListBlock: self._map_list,
            Blockquote: self._map_blockquote,
            FencedCode: self._map_code,
            ThematicBreak: lambda node, depth: [DividerBlock()],
            Table: self._map_table,
        }

    def transform(self, note: ParsedNote) -> NotionPage:
        """Map a parsed note to page properties plus body blocks."""
        record = dict(note.frontmatter)
        if note.title and "title" not in record:
            record["title"] = note.title
        properties = self.property_mapper.to_properties(record, note.tags)
        return NotionPage(properties=properties, children=self.map_blocks(note.document))

    def map_blocks(self, document: Document) -> list:
        """Map a document tree to top-level Notion blocks, in order."""
        return self._map_nodes(document.children, 0)

    def _map_nodes(self, nodes: Sequence, depth: int) -> list:
        if depth > self.config.max_depth:
            if nodes:
                logger.warning(f"Dropping {len(nodes)} node(s) nested deeper than {self.config.max_depth}")
            return []
        blocks = []
        for node in nodes:
            blocks.extend(self._map_node(node, depth))
        return blocks

    def _map_node(self, node, depth: int) -> list:
        handler = self._handlers.get(type(node))
        if handler is None:
            logger.debug(f"Skipping unmapped node: {getattr(node, 'kind', type(node).__name__)}")
            return []
        return handler(node, depth)

    def _map_heading(self, node: Heading, depth: int) -> list:
        if not 1 <= node.level <= 6:
            raise TransformError(f"heading level must be 1-6, got {node.level}")
        if node.level <= 3 or self.config.flatten_headings:
            return [HeadingBlock(level=min(node.level, 3), rich_text=self.composer.compose_all(node.children))]
        return [ParagraphBlock(rich_text=self.composer.compose_all(node.children, Annotations(bold=True)))]

    def _map_paragraph(self, node: Paragraph, depth: int) -> list:
        expression = display_math_expression(node)
        if expression is not None:
            return [EquationBlock(expression=expression)]

        image = _standalone_image(node)
        if image is not None:
            return [self._map_image(image)]

        return [ParagraphBlock(rich_text=self.composer.compose_all(node.children))]

    def _map_image(self, node) -> Block:
        if isinstance(node, WikiLink):
            return self._image_placeholder(node.target, node.alias, wikilink=True)
        if is_local_path(node.url):
            return self._image_placeholder(node.url, node.alt, wikilink=False)
        caption = [RichText(content=node.alt)] if node.alt else []
        return ImageBlock(url=node.url, caption=caption)

    def _image_placeholder(self, path: str, alt: str, wikilink: bool) -> CalloutBlock:
        """Callout standing in for an image that cannot be uploaded."""
        if wikilink:
            title, body = "Wiki-link Image", "Wiki-link image reference."
        else:
            title, body = "Local Image", "Local image cannot be embedded without upload support."
        reference = f"{alt} ({path})" if alt else path
        return CalloutBlock(
            rich_text=[
                RichText(content=title, annotations=Annotations(bold=True)),
                RichText(content=f"\n{body}\n"),
                RichText(content=reference, annotations=Annotations(code=True)),
            ],
            icon=IMAGE_PLACEHOLDER_ICON,
            color="gray_background",
        )

    def _map_list(self, node: ListBlock, depth: int) -> list:
        return [self._map_list_item(item, node.ordered, depth) for item in node.items]

    def _map_list_item(self, item: ListItem, ordered: bool, depth: int) -> Block:
        content = item.children
        rich_text: list[RichText] = []
        checkbox = None
        if content and isinstance(content[0], Paragraph):
            inline = content[0].children
            if inline and isinstance(inline[0], TaskCheckbox):
                checkbox = inline[0]
            rich_text = self.composer.compose_all(inline)
            content = content[1:]

        children = self._map_nodes(content, depth + 1)

        if checkbox is not None:
            return ToDoBlock(rich_text=rich_text, checked=checkbox.checked, children=children)
        if ordered:
            return NumberedListItemBlock(rich_text=rich_text, children=children)
        return BulletedListItemBlock(rich_text=rich_text, children=children)

    def _map_blockquote(self, node: Blockquote, depth: int) -> list:
        first = node.children[0] if node.children else None
        if isinstance(first, Paragraph):
            first_line, rest = _split_first_line(first.children)
            match = CALLOUT_PATTERN.match(_plain_text(first_line).strip())
            if match:
                return [self._map_callout(match, rest, node.children[1:], depth)]

        rich_text: list[RichText] = []
        children_nodes = []
        for child in node.children:
            if isinstance(child, Paragraph):
                if rich_text:
                    rich_text.append(RichText(content="\n"))
                rich_text.extend(self.composer.compose_all(child.children))
            else:
                children_nodes.append(child)
        return [QuoteBlock(
            rich_text=enforce_content_limit(_merge_adjacent_runs(rich_text)),
            children=self._map_nodes(children_nodes, depth + 1),
        )]

    def _map_callout(self, match: re.Match, body_inline: list, rest: Sequence, depth: int) -> CalloutBlock:
        callout_type = match.group(1).lower()
        title = match.group(3).strip()
        icon = self.config.callout_icons.get(callout_type, DEFAULT_CALLOUT_ICON)

        body: list[RichText] = self.composer.compose_all(body_inline)
        children_nodes = []
        for child in rest:
            if isinstance(child, Paragraph):
                if body:
                    body.append(RichText(content="\n"))
                body.extend(self.composer.compose_all(child.children))
            else:
                children_nodes.append(child)

        rich_text: list[RichText] = []
        if title:
            rich_text.append(RichText(content=title, annotations=Annotations(bold=True)))
            if body:
                rich_text.append(RichText(content="\n"))
        rich_text.extend(body)

        return CalloutBlock(
            rich_text=enforce_content_limit(_merge_adjacent_runs(rich_text)),
            icon=icon,
            children=self._map_nodes(children_nodes, depth + 1),
        )

    def _map_code(self, node: FencedCode, depth: int) -> list:
        language = node.language
        code = node.content[:-1] if node.content.endswith("\n") else node.content

        if language in ("math", "latex"):
            return [EquationBlock(expression=code.strip())]
        if language in ("dataview", "dataviewjs"):
            return [self._dataview_placeholder(code, language == "dataviewjs")]
        return [CodeBlock(rich_text=split_code_content(code), language=normalize_language(language))]

    def _dataview_placeholder(self, query: str, javascript: bool) -> CalloutBlock:
        """Callout preserving a Dataview query that only Obsidian can run."""
        if javascript:
            title, body = "Dataview JS Query", "This JavaScript query requires Obsidian to execute:"
        else:
            title, body = "Dataview Query", "This query requires Obsidian to execute:"
        rich_text = [
            RichText(content=title, annotations=Annotations(bold=True)),
            RichText(content=f"\n{body}\n\n"),
        ]
        rich_text.extend(
            RichText(content=segment, annotations=Annotations(code=True))
            for segment in split_text(query)
        )
        return CalloutBlock(rich_text=rich_text, icon=DATAVIEW_PLACEHOLDER_ICON, color="blue_background")

    def _map_table(self, node: Table, depth: int) -> list:
        source_rows = ([node.header] if node.header is not None else []) + list(node.rows)
        if not source_rows:
            return []
        width = len(source_rows[0].cells) or 1

        rows = []
        for row in source_rows:
            cells = [self.composer.compose_all(cell.children) for cell in row.cells[:width]]
            cells.extend([] for _ in range(width - len(cells)))
            rows.append(TableRowBlock(cells=cells))

        return [TableBlock(
            width=width,
            has_column_header=node.header is not None,
            children=rows,
        )]


# =============================================================================
# Property Mapper (front-matter <-> page properties)
# =============================================================================


@dataclass(frozen=True)
class PropertyMapping:
    """Binds a front-matter key to a Notion property name and type."""
    record_key: str
    notion_name: str
    notion_type: PropertyType


DEFAULT_MAPPINGS = (
    PropertyMapping("title", "Name", PropertyType.TITLE),
    PropertyMapping("tags", "Tags", PropertyType.MULTI_SELECT),
)

BUILTIN_MAPPINGS = DEFAULT_MAPPINGS + (
    PropertyMapping("status", "Status", PropertyType.SELECT),
    PropertyMapping("due", "Due Date", PropertyType.DATE),
    PropertyMapping("date", "Date", PropertyType.DATE),
    PropertyMapping("priority", "Priority", PropertyType.SELECT),
    PropertyMapping("created", "Created", PropertyType.DATE),
    PropertyMapping("modified", "Modified", PropertyType.DATE),
    PropertyMapping("url", "URL", PropertyType.URL),
    PropertyMapping("author", "Author", PropertyType.RICH_TEXT),
)

PROPERTY_TYPE_ALIASES = {
    "text": PropertyType.RICH_TEXT,
    "tags": PropertyType.MULTI_SELECT,
    "bool": PropertyType.CHECKBOX,
    "boolean": PropertyType.CHECKBOX,
    "phone": PropertyType.PHONE,
}

DATE_FORMATS = (
    ("%Y-%m-%d", False),
    ("%Y/%m/%d", False),
    ("%m/%d/%Y", False),
    ("%b %d, %Y", False),
    ("%B %d, %Y", False),
    ("%Y-%m-%dT%H:%M:%S%z", True),
    ("%Y-%m-%dT%H:%M:%S", True),
)

TRUTHY_STRINGS = {"true", "1", "yes"}


def property_type_from_string(name: str) -> PropertyType:
    """Parse a configured property type, accepting common aliases.

    Raises:
        ConfigError: If the name matches no property type.
    """
    key = name.strip().lower()
    if key in PROPERTY_TYPE_ALIASES:
        return PROPERTY_TYPE_ALIASES[key]
    try:
        return PropertyType(key)
    except ValueError:
        raise ConfigError(f"unknown property type: {name!r}") from None


def merge_property_mappings(
    base: Sequence[PropertyMapping],
    overrides: Sequence[PropertyMapping]
) -> list[PropertyMapping]:
    """Combine mappings; an override replaces the base entry with its record key."""
    merged = {mapping.record_key: mapping for mapping in base}
    for mapping in overrides:
        merged[mapping.record_key] = mapping
    return list(merged.values())


def parse_date(value: Any) -> Optional[str]:
    """Normalize a date value to an ISO 8601 string, or None if unparseable."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    for fmt, has_time in DATE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed.isoformat() if has_time else parsed.date().isoformat()
    return None


def _coerce_number(value: Any) -> Optional[Union[int, float]]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return number if number == number and number not in (float("inf"), float("-inf")) else None
    return None


def _coerce_checkbox(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in TRUTHY_STRINGS


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = [str(item) for item in value if item is not None]
    else:
        items = [str(value)]
    return [item.strip() for item in items if item.strip()]


def _as_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return str(value)


def _auto_type(value: Any) -> Any:
    """Front-matter value of an unmapped property, or None to omit it."""
    result = value.to_python()
    if result is None or result == []:
        return None
    return result


class PropertyMapper:
    """Converts between a front-matter record and Notion page properties."""

    def __init__(self, mappings: Optional[Sequence[PropertyMapping]] = None):
        self.mappings = list(mappings) if mappings is not None else list(DEFAULT_MAPPINGS)

    def to_properties(self, record: dict[str, Any], tags: Optional[Sequence[str]] = None) -> PropertySet:
        """Build page properties from front-matter plus the note's tags.

        Values that cannot be coerced to the mapped type are omitted.
        """
        tags = list(tags or [])
        properties = PropertySet()
        for mapping in self.mappings:
            value = record.get(mapping.record_key)
            if mapping.notion_type == PropertyType.MULTI_SELECT and mapping.record_key == "tags":
                value = _merge_unique(_as_list(value) if value is not None else [], tags) or None
            if value is None:
                continue
            prop = self._convert(value, mapping.notion_type)
            if prop is None:
                logger.warning(f"Omitting property {mapping.notion_name!r}: cannot convert {value!r}")
                continue
            properties[mapping.notion_name] = prop
        return properties

    def _convert(self, value: Any, kind: PropertyType) -> Optional[PropertyValue]:
        if kind in (PropertyType.TITLE, PropertyType.RICH_TEXT):
            text = _as_text(value)
            return PropertyValue(kind, [RichText(content=segment) for segment in split_text(text)])
        if kind == PropertyType.NUMBER:
            number = _coerce_number(value)
            return PropertyValue(kind, number) if number is not None else None
        if kind == PropertyType.SELECT:
            name = _as_text(value).strip()
            return PropertyValue(kind, name) if name else None
        if kind == PropertyType.MULTI_SELECT:
            return PropertyValue(kind, _as_list(value))
        if kind == PropertyType.DATE:
            iso = parse_date(value)
            return PropertyValue(kind, DateValue(start=iso)) if iso else None
        if kind == PropertyType.CHECKBOX:
            return PropertyValue(kind, _coerce_checkbox(value))
        text = str(value).strip()
        return PropertyValue(kind, text) if text else None

    def to_record(self, properties: dict[str, PropertyValue]) -> tuple[dict[str, Any], list[str]]:
        """Build front-matter from page properties.

        Mapped properties are read first under their record keys; remaining
        properties are auto-typed under their lower-cased names without
        overriding a mapped key.

        Returns:
            (record, tags)
        """
        record: dict[str, Any] = {}
        tags: list[str] = []
        processed: set[str] = set()

        for mapping in self.mappings:
            prop = properties.get(mapping.notion_name)
            if prop is None:
                continue
            processed.add(mapping.notion_name)
            value = prop.to_python()
            if value is None:
                continue
            record[mapping.record_key] = value
            if mapping.record_key == "tags" and isinstance(value, list):
                tags = list(value)

        for name, prop in properties.items():
            if name in processed:
                continue
            key = name.lower()
            if key in record:
                continue
            value = _auto_type(prop)
            if value is not None:
                record[key] = value

        return record, tags


# =============================================================================
# Reverse Transformer (Notion blocks -> Markdown)
# =============================================================================


def _wrap(text: str, opening: str, closing: Optional[str] = None) -> str:
    """Wrap text in markers, keeping edge whitespace outside them."""
    if not text.strip():
        return text
    closing = opening if closing is None else closing
    core = text.strip()
    leading = text[:len(text) - len(text.lstrip())]
    trailing = text[len(text.rstrip()):]
    return f"{leading}{opening}{core}{closing}{trailing}"


def render_rich_text(runs: Sequence[RichText], resolver: Optional[LinkResolver] = None) -> str:
    """Render runs as Obsidian Markdown.

    Markers nest underline innermost, then highlight, code, strikethrough,
    italic and bold, with a link outermost. Page mentions become wiki-links
    to the resolved path, or to their display text when the path is unknown.
    """
    parts = []
    for run in runs:
        if run.mention is not None:
            parts.append(_render_mention(run, resolver))
            continue
        if run.equation is not None:
            parts.append(f"${run.equation}$")
            continue

        text = run.content
        annotations = run.annotations
        if annotations.underline:
            text = _wrap(text, "<u>", "</u>")
        if annotations.color == HIGHLIGHT_COLOR:
            text = _wrap(text, "==")
        if annotations.code:
            text = _wrap(text, "`")
        if annotations.strikethrough:
            text = _wrap(text, "~~")
        if annotations.italic:
            text = _wrap(text, "*")
        if annotations.bold:
            text = _wrap(text, "**")
        if run.link and text:
            text = f"[{text}]({run.link})"
        parts.append(text)
    return "".join(parts)


def _render_mention(run: RichText, resolver: Optional[LinkResolver]) -> str:
    mention = run.mention
    if mention.type == "page":
        if resolver is not None:
            path, found = resolver.lookup_path(mention.id)
            if found:
                if path.lower().endswith(".md"):
                    path = path[:-3]
                return f"[[{path}]]"
        return f"[[{run.content}]]"
    if mention.type == "date":
        return run.content or mention.start
    if mention.type == "user":
        name = run.content.lstrip("@")
        return f"@{name}" if name else ""
    return run.content


def _escape_table_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", "<br>")


LIST_BLOCK_TYPES = {BlockType.BULLETED_LIST_ITEM, BlockType.NUMBERED_LIST_ITEM, BlockType.TO_DO, BlockType.TOGGLE}

# Indentation added per nesting level
INDENT_UNIT = "  "


class ReverseTransformer:
    """Renders Notion blocks and pages as Obsidian Markdown.

    Every block kind has a renderer; kinds without a Markdown form are
    kept as an HTML comment naming the kind.
    """

    def __init__(
        self,
        resolver: Optional[LinkResolver] = None,
        config: Optional[TransformConfig] = None,
        property_mapper: Optional[PropertyMapper] = None
    ):
        self.resolver = resolver
        self.config = config or default_transform_config()
        self.property_mapper = property_mapper or PropertyMapper()

        # First callout type listed for an icon wins when synonyms share it
        self._icon_types: dict[str, str] = {}
        for callout_type, icon in self.config.callout_icons.items():
            self._icon_types.setdefault(icon, callout_type)

        self._renderers: dict[BlockType, Callable[[Any, str], str]] = {
            BlockType.PARAGRAPH: self._render_paragraph,
            BlockType.HEADING_1: self._render_heading,
            BlockType.HEADING_2: self._render_heading,
            BlockType.HEADING_3: self._render_heading,
            BlockType.BULLETED_LIST_ITEM: lambda b, i: self._render_list_item(b, i, "- "),
            BlockType.NUMBERED_LIST_ITEM: lambda b, i: self._render_list_item(b, i, "1. "),
            BlockType.TO_DO: lambda b, i: self._render_list_item(b, i, "- [x] " if b.checked else "- [ ] "),
            BlockType.TOGGLE: lambda b, i: self._render_list_item(b, i, "- "),
            BlockType.QUOTE: self._render_quote,
            BlockType.CALLOUT: self._render_callout,
            BlockType.CODE: self._render_code,
            BlockType.EQUATION: lambda b, i: f"{i}$$\n{i}{b.expression}\n{i}$$\n\n",
            BlockType.DIVIDER: lambda b, i: f"{i}---\n\n",
            BlockType.IMAGE: lambda b, i: f"{i}![{self._text(b.caption)}]({b.url})\n\n",
            BlockType.BOOKMARK: self._render_bookmark,
            BlockType.EMBED: lambda b, i: f"{i}<{b.url}>\n\n",
            BlockType.VIDEO: lambda b, i: f"{i}![video]({b.url})\n\n",
            BlockType.FILE: lambda b, i: f"{i}[{self._text(b.caption) or b.name or 'file'}]({b.url})\n\n",
            BlockType.PDF: lambda b, i: f"{i}[PDF]({b.url})\n\n",
            BlockType.TABLE: self._render_table,
            BlockType.TABLE_ROW: lambda b, i: f"{i}{self._table_row(b.cells, len(b.cells))}\n\n",
            BlockType.COLUMN_LIST: lambda b, i: self._render_blocks(b.children, i),
            BlockType.COLUMN: lambda b, i: self._render_blocks(b.children, i),
            BlockType.SYNCED_BLOCK: lambda b, i: self._render_blocks(b.children, i),
            BlockType.UNSUPPORTED: lambda b, i: f"{i}<!-- unsupported block: {b.kind} -->\n\n",
        }

    def blocks_to_markdown(self, blocks: Sequence[Block]) -> str:
        """Render top-level blocks as a Markdown body."""
        body = self._render_blocks(blocks, "")
        return body.rstrip("\n") + "\n" if body.strip() else ""

    def page_to_markdown(self, page: NotionPage) -> str:
        """Render a page as a note: YAML front-matter followed by the body."""
        record, tags = self.property_mapper.to_record(page.properties)
        if tags:
            record["tags"] = tags
        body = self.blocks_to_markdown(page.children)
        if not record:
            return body
        frontmatter = yaml.safe_dump(record, allow_unicode=True, sort_keys=True, default_flow_style=False)
        return f"---\n{frontmatter}---\n\n{body}"

    def callout_type_for_icon(self, icon: str) -> str:
        return self._icon_types.get(icon, "note")

    def _text(self, runs: Sequence[RichText]) -> str:
        return render_rich_text(runs, self.resolver)

    def _render_blocks(self, blocks: Sequence[Block], indent: str) -> str:
        parts = []
        previous: Optional[BlockType] = None
        for block in blocks:
            kind = block.type
            # A blank line ends a list before other content (or a different list)
            if previous in LIST_BLOCK_TYPES and previous != kind:
                parts.append("\n")
            parts.append(self._render(block, indent))
            previous = kind
        if previous in LIST_BLOCK_TYPES:
            parts.append("\n")
        return "".join(parts)

    def _render(self, block: Block, indent: str) -> str:
        renderer = self._renderers.get(block.type)
        if renderer is None:
            return f"{indent}<!-- unsupported block: {block.type.value} -->\n\n"
        return renderer(block, indent)

    def _render_children(self, children: Sequence[Block], indent: str) -> str:
        rendered = self._render_blocks(children, indent)
        # Nested content stays attached to its parent item
        return rendered.rstrip("\n") + "\n" if rendered.strip() else ""

    def _render_paragraph(self, block: ParagraphBlock, indent: str) -> str:
        text = self._text(block.rich_text)
        if not text.strip():
            return "\n"
        lines = text.split("\n")
        result = "\n".join(indent + line for line in lines) + "\n\n"
        if block.children:
            result += self._render_children(block.children, indent + INDENT_UNIT) + "\n"
        return result

    def _render_heading(self, block: HeadingBlock, indent: str) -> str:
        return f"{indent}{'#' * block.level} {self._text(block.rich_text)}\n\n"

    def _render_list_item(self, block, indent: str, marker: str) -> str:
        text = self._text(block.rich_text)
        continuation = indent + INDENT_UNIT
        lines = text.split("\n")
        result = indent + marker + lines[0] + "\n"
        for line in lines[1:]:
            result += continuation + line + "\n"
        if block.children:
            result += self._render_children(block.children, indent + INDENT_UNIT)
        return result

    def _quoted(self, text: str, indent: str) -> str:
        lines = text.split("\n")
        while lines and not lines[-1].strip():
            lines.pop()
        return "".join(f"{indent}> {line}\n" if line.strip() else f"{indent}>\n" for line in lines)

    def _render_quote(self, block: QuoteBlock, indent: str) -> str:
        content = self._text(block.rich_text)
        if block.children:
            content += "\n\n" + self._render_blocks(block.children, "")
        return self._quoted(content, indent) + "\n"

    def _render_callout(self, block: CalloutBlock, indent: str) -> str:
        runs = list(block.rich_text)
        title = ""
        if runs and runs[0].type == "text" and runs[0].annotations.bold and not runs[0].annotations.code:
            first = runs[0]
            rest = runs[1:]
            if "\n" not in first.content and (not rest or rest[0].content.startswith("\n")):
                title = first.content.strip()
                runs = rest
                if runs:
                    runs[0] = replace(runs[0], content=runs[0].content[1:])

        header = f"[!{self.callout_type_for_icon(block.icon)}]"
        if title:
            header += f" {title}"
        content = header + "\n" + self._text(runs)
        if block.children:
            content += "\n\n" + self._render_blocks(block.children, "")
        return self._quoted(content, indent) + "\n"

    def _render_code(self, block: CodeBlock, indent: str) -> str:
        language = "" if block.language == PLAIN_TEXT_LANGUAGE else block.language
        lines = block.code.split("\n")
        body = "".join(f"{indent}{line}\n" for line in lines)
        return f"{indent}```{language}\n{body}{indent}```\n\n"

    def _render_bookmark(self, block: BookmarkBlock, indent: str) -> str:
        caption = self._text(block.caption)
        if caption:
            return f"{indent}[{caption}]({block.url})\n\n"
        return f"{indent}<{block.url}>\n\n"

    def _table_row(self, cells: Sequence[list[RichText]], width: int) -> str:
        rendered = [_escape_table_cell(self._text(cell)) for cell in cells[:width]]
        rendered.extend("" for _ in range(width - len(rendered)))
        return "| " + " | ".join(rendered) + " |"

    def _render_table(self, block: TableBlock, indent: str) -> str:
        if not block.children:
            return ""
        width = max([block.width] + [len(row.cells) for row in block.children])
        lines = []
        for index, row in enumerate(block.children):
            lines.append(indent + self._table_row(row.cells, width))
            # Markdown tables always need a header separator after row one
            if index == 0:
                lines.append(indent + "|" + " --- |" * width)
        return "\n".join(lines) + "\n\n"


# =============================================================================
# Notion API Client
# =============================================================================

NOTION_API_BASE = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
NOTION_PAGE_SIZE = 100


def _http_error_detail(e: httpx.HTTPStatusError, max_len: int = 300) -> str:
    """Extract a truncated error body from an HTTP status error."""
    if e.response is not None:
        return e.response.text[:max_len]
    return str(e)


class NotionClient:
    """Thin async Notion client: page create/update/fetch and child blocks.

    Requests are throttled to `requests_per_second` and child appends are
    sent in batches of at most `batch_size`. Failed requests raise
    NotionAPIError; there is no automatic retry.
    """

    def __init__(
        self,
        token: str,
        *,
        requests_per_second: float = 3.0,
        batch_size: int = 100,
        concurrency: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: str = NOTION_API_BASE
    ):
        if not 1 <= batch_size <= 100:
            raise ValueError(f"batch_size must be 1-100, got {batch_size}")
        self.batch_size = batch_size
        self._min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request = 0.0
        self._semaphore = asyncio.Semaphore(concurrency)
        self._throttle_lock = asyncio.Lock()
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": NOTION_VERSION,
                "Content-Type": "application/json",
            },
            timeout=30.0,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "NotionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _throttle(self) -> None:
        if self._min_interval <= 0:
            return
        async with self._throttle_lock:
            loop = asyncio.get_running_loop()
            wait = self._last_request + self._min_interval - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = loop.time()

    async def _request(self, method: str, endpoint: str, json_body: Optional[dict] = None) -> dict:
        """Make an authenticated, throttled request and return the JSON body."""
        async with self._semaphore:
            await self._throttle()
            try:
                response = await self._client.request(method, endpoint, json=json_body)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise NotionAPIError(
                    f"{method} {endpoint} failed",
                    status_code=e.response.status_code,
                    detail=_http_error_detail(e),
                ) from e
            except httpx.HTTPError as e:
                raise NotionAPIError(f"{method} {endpoint} failed", detail=str(e)) from e
        return response.json()

    async def get_page(self, page_id: str) -> dict:
        return await self._request("GET", f"/pages/{page_id}")

    async def list_children(self, block_id: str) -> list[dict]:
        """Fetch the immediate children of a block, following pagination."""
        blocks = []
        start_cursor = None
        while True:
            endpoint = f"/blocks/{block_id}/children?page_size={NOTION_PAGE_SIZE}"
            if start_cursor:
                endpoint += f"&start_cursor={start_cursor}"
            result = await self._request("GET", endpoint)
            blocks.extend(result.get("results", []))
            if not result.get("has_more"):
                break
            start_cursor = result.get("next_cursor")
        return blocks

    async def fetch_block_tree(self, block_id: str, depth: int = MAX_NESTING_DEPTH) -> list[dict]:
        """Fetch children recursively, attaching nested lists as `_children`.

        Levels are fetched breadth-first with the requests of each level
        issued concurrently.
        """
        if depth <= 0:
            return []
        blocks = await self.list_children(block_id)
        level = blocks
        for _ in range(depth - 1):
            parents = [b for b in level if b.get("has_children")]
            if not parents:
                break
            children_lists = await asyncio.gather(*(self.list_children(b["id"]) for b in parents))
            level = []
            for parent, children in zip(parents, children_lists):
                parent["_children"] = children
                level.extend(children)
        return blocks

    async def fetch_page(self, page_id: str) -> NotionPage:
        """Fetch a page's properties and block tree as a NotionPage."""
        data = await self.get_page(page_id)
        properties = PropertySet()
        for name, raw in (data.get("properties") or {}).items():
            prop = property_from_notion(raw)
            if prop is not None:
                properties[name] = prop
        blocks = [block_from_notion(raw) for raw in await self.fetch_block_tree(page_id)]
        icon = (data.get("icon") or {}).get("emoji")
        return NotionPage(properties=properties, children=blocks, icon=icon)

    async def append_children(self, block_id: str, blocks: Sequence[Block]) -> list[dict]:
        """Append blocks under a parent in batches of `batch_size`."""
        results = []
        for start in range(0, len(blocks), self.batch_size):
            batch = blocks[start:start + self.batch_size]
            result = await self._request(
                "PATCH",
                f"/blocks/{block_id}/children",
                {"children": [block_to_notion(block) for block in batch]},
            )
            results.extend(result.get("results", []))
        return results

    async def delete_block(self, block_id: str) -> None:
        await self._request("DELETE", f"/blocks/{block_id}")

    async def create_page(
        self,
        page: NotionPage,
        *,
        database_id: Optional[str] = None,
        parent_page_id: Optional[str] = None
    ) -> dict:
        """Create a page under a database or another page.

        The first batch of blocks is sent with the create request; the rest
        are appended afterwards.

        Raises:
            ValueError: Unless exactly one parent is given.
            NotionAPIError: If a request fails.
        """
        if bool(database_id) == bool(parent_page_id):
            raise ValueError("exactly one of database_id or parent_page_id is required")

        if database_id:
            parent = {"database_id": database_id}
            properties = page.properties
        else:
            parent = {"page_id": parent_page_id}
            properties = page.properties.for_page_parent()

        body: dict[str, Any] = {
            "parent": parent,
            "properties": properties.to_notion(),
            "children": [block_to_notion(block) for block in page.children[:self.batch_size]],
        }
        if page.icon:
            body["icon"] = {"type": "emoji", "emoji": page.icon}

        result = await self._request("POST", "/pages", body)
        remaining = page.children[self.batch_size:]
        if remaining:
            await self.append_children(result["id"], remaining)
        logger.info(f"Created page {result.get('id')} with {len(page.children)} block(s)")
        return result

    async def update_page(self, page_id: str, page: NotionPage) -> dict:
        """Replace a page's properties and content.

        Properties are updated, every existing child block is deleted, then
        the new blocks are appended. Not atomic: on failure the raised
        NotionAPIError names the stage reached.
        """
        stage = "fetch_page"
        try:
            current = await self.get_page(page_id)
            properties = page.properties
            if (current.get("parent") or {}).get("type") != "database_id":
                properties = properties.for_page_parent()

            stage = "update_properties"
            await self._request("PATCH", f"/pages/{page_id}", {"properties": properties.to_notion()})

            stage = "delete_children"
            for block in await self.list_children(page_id):
                await self.delete_block(block["id"])

            stage = "append_children"
            await self.append_children(page_id, page.children)
        except NotionAPIError as e:
            e.stage = stage
            raise
        logger.info(f"Updated page {page_id} with {len(page.children)} block(s)")
        return current


# =============================================================================
# Sync Configuration
# =============================================================================

ENV_VAR_PATTERN = re.compile(r'\$\{(\w+)\}')


def _expand_env(value: str) -> str:
    """Substitute ${NAME} with the environment variable (empty if unset)."""
    return ENV_VAR_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)


@dataclass
class SyncConfig:
    token: str = ""
    default_database: str = ""
    default_page: str = ""
    transform: TransformConfig = field(default_factory=default_transform_config)
    property_mappings: list[PropertyMapping] = field(default_factory=lambda: list(DEFAULT_MAPPINGS))
    links: dict[str, str] = field(default_factory=dict)
    requests_per_second: float = 3.0
    batch_size: int = 100


def config_from_dict(data: dict[str, Any]) -> SyncConfig:
    """Build a SyncConfig from the parsed YAML document.

    Raises:
        ConfigError: On unknown enum values or out-of-range numbers.
    """
    if not isinstance(data, dict):
        raise ConfigError("config must be a YAML mapping")

    notion = data.get("notion") or {}
    transform_data = data.get("transform") or {}
    rate_limit = data.get("rate_limit") or {}

    transform = default_transform_config()
    style = transform_data.get("unresolved_links", transform.unresolved_link_style)
    if style not in UNRESOLVED_LINK_STYLES:
        raise ConfigError(f"transform.unresolved_links must be one of {', '.join(UNRESOLVED_LINK_STYLES)}, got {style!r}")
    transform.unresolved_link_style = style
    transform.flatten_headings = bool(transform_data.get("flatten_headings", transform.flatten_headings))
    for callout_type, icon in (transform_data.get("callouts") or {}).items():
        transform.callout_icons[str(callout_type).lower()] = str(icon)

    base = BUILTIN_MAPPINGS if transform_data.get("builtin_properties") else DEFAULT_MAPPINGS
    overrides = []
    for entry in data.get("properties") or []:
        try:
            overrides.append(PropertyMapping(
                record_key=str(entry["obsidian"]),
                notion_name=str(entry["notion"]),
                notion_type=property_type_from_string(str(entry["type"])),
            ))
        except (KeyError, TypeError) as e:
            raise ConfigError(f"property mapping needs obsidian, notion and type keys: {entry!r}") from e

    batch_size = int(rate_limit.get("batch_size", 100))
    if not 1 <= batch_size <= 100:
        raise ConfigError(f"rate_limit.batch_size must be 1-100, got {batch_size}")
    requests_per_second = float(rate_limit.get("requests_per_second", 3.0))
    if requests_per_second < 0:
        raise ConfigError("rate_limit.requests_per_second must not be negative")

    return SyncConfig(
        token=_expand_env(str(notion.get("token") or "")),
        default_database=str(notion.get("default_database") or ""),
        default_page=str(notion.get("default_page") or ""),
        transform=transform,
        property_mappings=merge_property_mappings(base, overrides),
        links={str(name): str(page_id) for name, page_id in (data.get("links") or {}).items()},
        requests_per_second=requests_per_second,
        batch_size=batch_size,
    )


def load_config(path: Union[str, Path]) -> SyncConfig:
    """Load a YAML config file.

    Raises:
        ConfigError: If the file is unreadable, not YAML, or invalid.
    """
    config_path = Path(path).expanduser()
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config {config_path}: {e}") from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {config_path}: {e}") from e
    return config_from_dict(data)


# =============================================================================
# Sync Operations
# =============================================================================

UUID_PATTERN = re.compile(r'([0-9a-f]{8}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{12})', re.IGNORECASE)


def normalize_page_ref(ref: str) -> str:
    """Extract a dashed page UUID from a bare ID or a Notion URL.

    Raises:
        ValueError: If no 32-hex-digit ID is present.
    """
    matches = UUID_PATTERN.findall(ref.split("?")[0])
    if not matches:
        raise ValueError(f"Invalid page reference: {ref}")
    clean = matches[-1].replace("-", "").lower()
    return f"{clean[:8]}-{clean[8:12]}-{clean[12:16]}-{clean[16:20]}-{clean[20:]}"


async def push_note(
    client: NotionClient,
    source: str,
    *,
    path: str = "",
    transformer: Optional[Transformer] = None,
    page_id: Optional[str] = None,
    database_id: Optional[str] = None,
    parent_page_id: Optional[str] = None
) -> dict:
    """Parse, transform and write one note.

    Updates `page_id` in place when given, otherwise creates a page under
    the database or parent page.
    """
    note = parse_note(source, path)
    page = (transformer or Transformer()).transform(note)
    if page_id:
        return await client.update_page(page_id, page)
    return await client.create_page(page, database_id=database_id, parent_page_id=parent_page_id)


async def pull_page(
    client: NotionClient,
    page_id: str,
    reverse: Optional[ReverseTransformer] = None
) -> str:
    """Fetch a page and render it as a Markdown note."""
    page = await client.fetch_page(page_id)
    return (reverse or ReverseTransformer()).page_to_markdown(page)


# =============================================================================
# MCP Server
# =============================================================================

mcp = FastMCP("obsidian-notion", host="127.0.0.1", port=2053)

_config = SyncConfig()
_client: Optional[NotionClient] = None


def _error(code: str, message: str, hint: Optional[str] = None) -> str:
    """Format a tool error with an optional hint."""
    parts = [f"error: {code} - {message}"]
    if hint:
        parts.append(f"hint: {hint}")
    return "\n".join(parts)


HINTS = {
    "no_token": "Pass --token-file <path> or set notion.token in the --config file.",
    "no_parent": "Pass parent (page or database ID) or set notion.default_page/default_database.",
    "missing_capability": "Share the page with the integration: open in Notion → Share → invite the integration.",
}


def _get_client() -> NotionClient:
    global _client
    if _client is None:
        if not _config.token:
            raise RuntimeError("No Notion token configured.")
        _client = NotionClient(
            _config.token,
            requests_per_second=_config.requests_per_second,
            batch_size=_config.batch_size,
        )
    return _client


def _resolver() -> DictLinkResolver:
    return DictLinkResolver(_config.links)


def _api_error(e: NotionAPIError) -> str:
    hint = HINTS["missing_capability"] if e.status_code in (403, 404) else None
    return _error("NOTION_API", str(e), hint=hint)


@mcp.tool()
async def note_push(
    markdown: str,
    path: str = "",
    parent: str = "",
    parent_is_database: bool = False,
    page: str = ""
) -> str:
    """Write an Obsidian note to Notion.

    Args:
        markdown: Full note text, including front-matter.
        path: Vault-relative note path (used for the fallback title).
        parent: Page or database ID/URL to create the page under.
        parent_is_database: Treat `parent` as a database.
        page: Existing page ID/URL to replace instead of creating one.

    Returns:
        "created <id>" / "updated <id>", or an error string.
    """
    try:
        client = _get_client()
    except RuntimeError as e:
        return _error("NO_TOKEN", str(e), hint=HINTS["no_token"])

    database_id = parent_page_id = page_id = None
    try:
        if page:
            page_id = normalize_page_ref(page)
        elif parent:
            if parent_is_database:
                database_id = normalize_page_ref(parent)
            else:
                parent_page_id = normalize_page_ref(parent)
        elif _config.default_database:
            database_id = _config.default_database
        elif _config.default_page:
            parent_page_id = _config.default_page
        else:
            return _error("NO_PARENT", "No target page or parent", hint=HINTS["no_parent"])
    except ValueError as e:
        return _error("BAD_REF", str(e))

    transformer = Transformer(
        resolver=_resolver(),
        config=_config.transform,
        property_mapper=PropertyMapper(_config.property_mappings),
    )
    try:
        result = await push_note(
            client, markdown, path=path, transformer=transformer,
            page_id=page_id, database_id=database_id, parent_page_id=parent_page_id,
        )
    except FrontmatterError as e:
        return _error("FRONTMATTER", str(e))
    except TransformError as e:
        return _error("TRANSFORM", str(e))
    except NotionAPIError as e:
        return _api_error(e)

    return f"{'updated' if page_id else 'created'} {result.get('id', page_id)}"


@mcp.tool()
async def note_pull(page: str) -> str:
    """Render a Notion page as an Obsidian note (front-matter + Markdown).

    Args:
        page: Page ID or Notion URL.
    """
    try:
        client = _get_client()
    except RuntimeError as e:
        return _error("NO_TOKEN", str(e), hint=HINTS["no_token"])
    try:
        page_id = normalize_page_ref(page)
    except ValueError as e:
        return _error("BAD_REF", str(e))

    reverse = ReverseTransformer(
        resolver=_resolver(),
        config=_config.transform,
        property_mapper=PropertyMapper(_config.property_mappings),
    )
    try:
        return await pull_page(client, page_id, reverse)
    except TransformError as e:
        return _error("TRANSFORM", str(e))
    except NotionAPIError as e:
        return _api_error(e)


@mcp.tool()
def note_preview(markdown: str, path: str = "") -> str:
    """Show the Notion request body a note would produce, without sending it.

    Args:
        markdown: Full note text, including front-matter.
        path: Vault-relative note path (used for the fallback title).

    Returns:
        JSON with "properties" and "children".
    """
    transformer = Transformer(
        resolver=_resolver(),
        config=_config.transform,
        property_mapper=PropertyMapper(_config.property_mappings),
    )
    try:
        page = transformer.transform(parse_note(markdown, path))
    except FrontmatterError as e:
        return _error("FRONTMATTER", str(e))
    except TransformError as e:
        return _error("TRANSFORM", str(e))
    return json.dumps({
        "properties": page.properties.to_notion(),
        "children": [block_to_notion(block) for block in page.children],
    }, ensure_ascii=False, indent=2)


# =============================================================================
# HTTP Endpoints (/health)
# =============================================================================

async def health_endpoint(request: Request) -> JSONResponse:
    """Health check endpoint for easy testing."""
    return JSONResponse({
        "status": "ok",
        "token_loaded": bool(_config.token),
        "default_database": _config.default_database or None,
        "default_page": _config.default_page or None,
    })


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """Run the Obsidian ↔ Notion MCP server.

    Supports two transport modes:
    - stdio (default): launched directly by an MCP client
    - http: standalone server on port 2053

    Usage:
        obsidian-notion --config sync.yaml
        obsidian-notion --token-file ~/.notion_token --http
    """
    import argparse

    parser = argparse.ArgumentParser(description="Obsidian ↔ Notion MCP Server")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--token-file", help="Path to file containing Notion API token")
    parser.add_argument(
        "--http",
        action="store_true",
        help="Run as HTTP server on localhost:2053 instead of stdio"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    global _config
    if args.config:
        try:
            _config = load_config(args.config)
        except ConfigError as e:
            logger.error(str(e))
            raise SystemExit(1)
        logger.info(f"Config loaded from {args.config}")

    if args.token_file:
        token_path = Path(args.token_file).expanduser()
        if not token_path.exists():
            logger.error(f"Token file not found: {token_path}")
            raise SystemExit(1)
        _config.token = token_path.read_text().strip()

    if not _config.token:
        logger.error("No Notion token: pass --token-file or set notion.token in --config")
        raise SystemExit(1)

    if args.http:
        import uvicorn

        app = mcp.streamable_http_app()
        app.add_route("/health", health_endpoint, methods=["GET"])

        logger.info("Starting Obsidian-Notion MCP server on http://127.0.0.1:2053")
        uvicorn.run(app, host="127.0.0.1", port=2053, log_level="warning")
    else:
        mcp.run()


if __name__ == "__main__":
    main()
