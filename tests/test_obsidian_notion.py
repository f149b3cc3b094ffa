"""Tests for obsidian_notion module - parser, transformers, properties and client."""

import asyncio
import json
from datetime import date

import httpx
import pytest
from obsidian_notion import (
    BUILTIN_MAPPINGS,
    DEFAULT_MAPPINGS,
    NOTION_RICH_TEXT_LIMIT,
    Annotations,
    BlockType,
    BookmarkBlock,
    BulletedListItemBlock,
    CalloutBlock,
    CodeBlock,
    ColumnBlock,
    ColumnListBlock,
    ConfigError,
    DateValue,
    DictLinkResolver,
    DividerBlock,
    EmbedBlock,
    Emphasis,
    EquationBlock,
    FileBlock,
    FrontmatterError,
    HeadingBlock,
    ImageBlock,
    Mention,
    NotionAPIError,
    NotionClient,
    NotionPage,
    NumberedListItemBlock,
    ParagraphBlock,
    PdfBlock,
    PropertyMapper,
    PropertyMapping,
    PropertySet,
    PropertyType,
    PropertyValue,
    QuoteBlock,
    ReverseTransformer,
    RichText,
    RichTextComposer,
    SyncedBlock,
    TableBlock,
    TableRowBlock,
    Text,
    ToDoBlock,
    ToggleBlock,
    TransformConfig,
    TransformError,
    Transformer,
    UnsupportedBlock,
    VideoBlock,
    WikiLink,
    _BLOCK_DECODERS,
    _BLOCK_ENCODERS,
    block_from_notion,
    block_to_notion,
    config_from_dict,
    default_transform_config,
    is_local_path,
    load_config,
    merge_property_mappings,
    normalize_language,
    normalize_page_ref,
    note_preview,
    parse_date,
    parse_note,
    parse_obsidian_text,
    property_from_notion,
    property_type_from_string,
    pull_page,
    push_note,
    render_rich_text,
    split_code_content,
    split_rich_text,
    split_text,
)


def _blocks(markdown: str, resolver=None, config=None) -> list:
    """Parse and map a Markdown body to Notion blocks."""
    transformer = Transformer(resolver=resolver, config=config)
    return transformer.map_blocks(parse_note(markdown).document)


def _plain(runs) -> str:
    return "".join(run.content for run in runs)


# =============================================================================
# Parser
# =============================================================================


class TestParseNote:
    """Tests for parse_note front-matter, tags and Obsidian extensions."""

    def test_frontmatter_is_parsed_and_stripped(self):
        note = parse_note("---\ntitle: My Note\nstatus: draft\n---\n# Heading\n")
        assert note.frontmatter == {"title": "My Note", "status": "draft"}
        assert len(note.document.children) == 1

    def test_frontmatter_keys_preserve_case(self):
        note = parse_note("---\nDueDate: 2024-01-15\n---\nbody\n")
        assert "DueDate" in note.frontmatter

    def test_invalid_frontmatter_raises(self):
        with pytest.raises(FrontmatterError):
            parse_note("---\ntitle: [unclosed\n---\nBody\n")

    def test_non_mapping_frontmatter_raises(self):
        with pytest.raises(FrontmatterError):
            parse_note("---\n- a\n- b\n---\nBody\n")

    def test_tags_merge_frontmatter_and_hashtags(self):
        note = parse_note("---\ntags: [alpha, beta]\n---\nText with #gamma and #alpha and #123\n")
        assert note.tags == ["alpha", "beta", "gamma"]

    def test_tags_string_form(self):
        note = parse_note("---\ntags: one, two\n---\nBody\n")
        assert note.tags == ["one", "two"]

    def test_title_falls_back_to_path(self):
        note = parse_note("Body\n", path="Projects/Plan.md")
        assert note.title == "Plan"

    def test_wikilinks_and_embeds_collected(self):
        note = parse_note("See [[Other Note|other]] and ![[diagram.png]]\n")
        assert [link.target for link in note.wikilinks] == ["Other Note"]
        assert [link.target for link in note.embeds] == ["diagram.png"]

    def test_empty_document(self):
        note = parse_note("")
        assert note.document.children == []
        assert note.frontmatter == {}


class TestParseObsidianText:
    """Tests for the wiki-link / inline math text grammar."""

    def test_plain_text_single_node(self):
        assert parse_obsidian_text("just text") == [Text("just text")]

    def test_wikilink_with_alias_and_heading(self):
        nodes = parse_obsidian_text("go to [[Note#Section|there]] now")
        assert nodes[0] == Text("go to ")
        assert nodes[1] == WikiLink(target="Note", alias="there", heading="Section")
        assert nodes[2] == Text(" now")

    def test_block_reference(self):
        nodes = parse_obsidian_text("[[Note#^abc123]]")
        assert nodes[0].target == "Note"
        assert nodes[0].block == "abc123"

    def test_embed(self):
        nodes = parse_obsidian_text("![[image.png]]")
        assert nodes == [WikiLink(target="image.png", embed=True)]

    def test_inline_math(self):
        nodes = parse_obsidian_text("area $\\pi r^2$ here")
        assert nodes[1].expression == "\\pi r^2"

    def test_currency_is_not_math(self):
        assert parse_obsidian_text("costs $5 and $ 10") == [Text("costs $5 and $ 10")]

    def test_unclosed_brackets_stay_text(self):
        assert parse_obsidian_text("[[not closed") == [Text("[[not closed")]


# =============================================================================
# Block Mapper
# =============================================================================


class TestHeadings:
    """Tests for heading mapping."""

    def test_levels_1_to_3(self):
        blocks = _blocks("# One\n\n## Two\n\n### Three\n")
        assert [b.type for b in blocks] == [BlockType.HEADING_1, BlockType.HEADING_2, BlockType.HEADING_3]
        assert _plain(blocks[0].rich_text) == "One"

    def test_deep_headings_flatten_to_level_3(self):
        blocks = _blocks("#### Four\n\n###### Six\n")
        assert all(isinstance(b, HeadingBlock) and b.level == 3 for b in blocks)

    def test_deep_headings_as_bold_paragraphs(self):
        config = TransformConfig(flatten_headings=False)
        blocks = _blocks("#### Four\n", config=config)
        assert isinstance(blocks[0], ParagraphBlock)
        assert blocks[0].rich_text[0].annotations.bold


class TestParagraphs:
    """Tests for paragraph, equation and image paragraph mapping."""

    def test_paragraph(self):
        blocks = _blocks("Hello world\n")
        assert isinstance(blocks[0], ParagraphBlock)
        assert _plain(blocks[0].rich_text) == "Hello world"

    def test_soft_break_becomes_space(self):
        blocks = _blocks("line one\nline two\n")
        assert _plain(blocks[0].rich_text) == "line one line two"

    def test_hard_break_becomes_newline(self):
        blocks = _blocks("line one\\\nline two\n")
        assert _plain(blocks[0].rich_text) == "line one\nline two"

    def test_display_math_single_line(self):
        blocks = _blocks("$$x$$\n")
        assert blocks == [EquationBlock(expression="x")]

    def test_display_math_padded(self):
        blocks = _blocks("$$ E = mc^2 $$\n")
        assert blocks[0].expression == "E = mc^2"

    def test_display_math_multiline(self):
        blocks = _blocks("$$\n\\frac{a}{b}\n$$\n")
        assert isinstance(blocks[0], EquationBlock)
        assert blocks[0].expression == "\\frac{a}{b}"

    def test_two_equations_in_paragraph_not_display_math(self):
        blocks = _blocks("$$a$$ and $$b$$\n")
        assert isinstance(blocks[0], ParagraphBlock)

    def test_remote_image(self):
        blocks = _blocks("![A cat](https://example.com/cat.png)\n")
        assert isinstance(blocks[0], ImageBlock)
        assert blocks[0].url == "https://example.com/cat.png"
        assert _plain(blocks[0].caption) == "A cat"

    def test_local_image_placeholder(self):
        blocks = _blocks("![diagram](images/diagram.png)\n")
        callout = blocks[0]
        assert isinstance(callout, CalloutBlock)
        assert callout.icon == "🖼️"
        assert callout.color == "gray_background"
        assert callout.rich_text[0].content == "Local Image"
        assert callout.rich_text[0].annotations.bold
        assert callout.rich_text[-1].annotations.code
        assert callout.rich_text[-1].content == "diagram (images/diagram.png)"

    def test_wikilink_image_placeholder(self):
        blocks = _blocks("![[photo.jpg]]\n")
        assert isinstance(blocks[0], CalloutBlock)
        assert blocks[0].rich_text[0].content == "Wiki-link Image"

    def test_image_with_text_stays_inline(self):
        blocks = _blocks("See ![cat](https://example.com/cat.png) here\n")
        assert isinstance(blocks[0], ParagraphBlock)
        linked = [run for run in blocks[0].rich_text if run.link]
        assert linked[0].content == "cat"
        assert linked[0].link == "https://example.com/cat.png"


class TestLists:
    """Tests for list and task list mapping."""

    def test_bulleted_with_nesting(self):
        blocks = _blocks("- Item 1\n  - Nested\n- Item 2\n")
        assert len(blocks) == 2
        assert all(isinstance(b, BulletedListItemBlock) for b in blocks)
        assert _plain(blocks[0].rich_text) == "Item 1"
        assert len(blocks[0].children) == 1
        assert _plain(blocks[0].children[0].rich_text) == "Nested"
        assert blocks[1].children == []

    def test_flat_list_has_no_children(self):
        blocks = _blocks("- Item 1\n- Item 2\n- Item 3\n")
        assert len(blocks) == 3
        assert all(isinstance(b, BulletedListItemBlock) for b in blocks)
        assert [_plain(b.rich_text) for b in blocks] == ["Item 1", "Item 2", "Item 3"]
        assert all(b.children == [] for b in blocks)

    def test_numbered(self):
        blocks = _blocks("1. First\n2. Second\n")
        assert all(isinstance(b, NumberedListItemBlock) for b in blocks)

    def test_task_items(self):
        blocks = _blocks("- [ ] Todo\n- [x] Done\n")
        assert [type(b) for b in blocks] == [ToDoBlock, ToDoBlock]
        assert blocks[0].checked is False
        assert blocks[1].checked is True
        assert _plain(blocks[0].rich_text).strip() == "Todo"
        assert _plain(blocks[1].rich_text).strip() == "Done"

    def test_task_checkbox_wins_over_ordered(self):
        blocks = _blocks("1. [x] Shipped\n")
        assert isinstance(blocks[0], ToDoBlock)

    def test_depth_limit_truncates(self):
        config = TransformConfig(max_depth=1)
        blocks = _blocks("- a\n  - b\n    - c\n", config=config)
        assert _plain(blocks[0].children[0].rich_text) == "b"
        assert blocks[0].children[0].children == []


class TestQuotesAndCallouts:
    """Tests for blockquote and callout mapping."""

    def test_callout(self):
        blocks = _blocks("> [!warning] Title\n> Body\n")
        callout = blocks[0]
        assert isinstance(callout, CalloutBlock)
        assert callout.icon == "⚠️"
        assert callout.rich_text[0].content == "Title"
        assert callout.rich_text[0].annotations.bold
        assert "Body" in _plain(callout.rich_text[1:])

    def test_callout_without_title_has_body_only(self):
        blocks = _blocks("> [!tip]\n> Use keyboard shortcuts\n")
        assert _plain(blocks[0].rich_text) == "Use keyboard shortcuts"
        assert not blocks[0].rich_text[0].annotations.bold
        assert blocks[0].icon == "💡"

    def test_callout_type_case_insensitive(self):
        blocks = _blocks("> [!BUG] Crash\n")
        assert blocks[0].icon == "🐛"
        assert _plain(blocks[0].rich_text) == "Crash"

    def test_unknown_callout_type_default_icon(self):
        blocks = _blocks("> [!custom] Mine\n")
        assert blocks[0].icon == "💡"

    def test_foldable_callout(self):
        blocks = _blocks("> [!faq]- Why?\n> Because\n")
        assert blocks[0].icon == "❓"
        assert blocks[0].rich_text[0].content == "Why?"

    def test_configured_icon(self):
        config = default_transform_config()
        config.callout_icons["warning"] = "🚧"
        blocks = _blocks("> [!warning] Careful\n", config=config)
        assert blocks[0].icon == "🚧"

    def test_plain_quote(self):
        blocks = _blocks("> Just a quote\n")
        assert isinstance(blocks[0], QuoteBlock)
        assert _plain(blocks[0].rich_text) == "Just a quote"

    def test_quote_paragraphs_joined(self):
        blocks = _blocks("> First\n>\n> Second\n")
        assert _plain(blocks[0].rich_text) == "First\nSecond"


class TestCode:
    """Tests for fenced code mapping."""

    def test_fenced_code(self):
        blocks = _blocks("```python\nprint('hi')\n```\n")
        assert isinstance(blocks[0], CodeBlock)
        assert blocks[0].language == "python"
        assert blocks[0].code == "print('hi')"

    def test_language_alias(self):
        blocks = _blocks("```js\nlet x = 1\n```\n")
        assert blocks[0].language == "javascript"

    def test_unknown_language_is_plain_text(self):
        assert normalize_language("brainfunk") == "plain text"
        assert normalize_language("") == "plain text"

    def test_math_fence_becomes_equation(self):
        blocks = _blocks("```math\na^2 + b^2\n```\n")
        assert blocks == [EquationBlock(expression="a^2 + b^2")]

    def test_dataview_placeholder(self):
        blocks = _blocks("```dataview\nLIST FROM #project\n```\n")
        callout = blocks[0]
        assert isinstance(callout, CalloutBlock)
        assert callout.icon == "📊"
        assert callout.color == "blue_background"
        assert callout.rich_text[0].content == "Dataview Query"
        assert callout.rich_text[-1].content == "LIST FROM #project"
        assert callout.rich_text[-1].annotations.code

    def test_dataviewjs_placeholder(self):
        blocks = _blocks("```dataviewjs\ndv.list([1])\n```\n")
        assert blocks[0].rich_text[0].content == "Dataview JS Query"

    def test_long_code_is_split(self):
        code = "\n".join("x" * 99 for _ in range(60))
        blocks = _blocks(f"```\n{code}\n```\n")
        runs = blocks[0].rich_text
        assert len(runs) > 1
        assert all(len(run.content) <= NOTION_RICH_TEXT_LIMIT for run in runs)
        assert "".join(run.content for run in runs) == code


class TestTablesAndDividers:
    """Tests for table and thematic break mapping."""

    def test_table(self):
        blocks = _blocks("| A | B |\n| --- | --- |\n| 1 | 2 |\n| 3 | 4 |\n")
        table = blocks[0]
        assert isinstance(table, TableBlock)
        assert table.width == 2
        assert table.has_column_header is True
        assert len(table.children) == 3
        assert all(len(row.cells) == 2 for row in table.children)
        assert _plain(table.children[1].cells[0]) == "1"

    def test_divider(self):
        blocks = _blocks("above\n\n---\n")
        assert blocks[1] == DividerBlock()

    def test_block_order_preserved(self):
        blocks = _blocks("# H\n\npara\n\n---\n\n- item\n")
        assert [b.type for b in blocks] == [
            BlockType.HEADING_1, BlockType.PARAGRAPH, BlockType.DIVIDER, BlockType.BULLETED_LIST_ITEM,
        ]

    def test_html_block_skipped(self):
        blocks = _blocks("<div>\nraw\n</div>\n\nafter\n")
        assert [b.type for b in blocks] == [BlockType.PARAGRAPH]


# =============================================================================
# Rich Text Composer
# =============================================================================


class TestRichTextComposer:
    """Tests for inline composition."""

    def test_highlight_three_runs(self):
        runs = _blocks("This has ==highlighted== text.\n")[0].rich_text
        assert [run.content for run in runs] == ["This has ", "highlighted", " text."]
        assert runs[1].annotations.color == "yellow_background"
        assert runs[0].annotations.color == "default"

    def test_two_highlights_in_one_text(self):
        runs = RichTextComposer().compose(Text("a ==b== c ==d=="))
        assert [(run.content, run.annotations.color) for run in runs] == [
            ("a ", "default"),
            ("b", "yellow_background"),
            (" c ", "default"),
            ("d", "yellow_background"),
        ]

    def test_no_highlight_single_run(self):
        runs = RichTextComposer().compose(Text("plain"))
        assert len(runs) == 1

    def test_bold_italic(self):
        runs = _blocks("***both***\n")[0].rich_text
        assert runs[0].annotations.bold and runs[0].annotations.italic

    def test_sibling_runs_do_not_share_styling(self):
        runs = _blocks("**a** b\n")[0].rich_text
        assert runs[0].annotations.bold
        assert not runs[1].annotations.bold
        assert runs[0].annotations is not runs[1].annotations

    def test_annotations_copy_is_independent(self):
        source = Annotations(bold=True)
        derived = source.copy()
        derived.italic = True
        derived.color = "red"
        assert source == Annotations(bold=True)

    def test_mutating_run_leaves_inherited_and_siblings_alone(self):
        inherited = Annotations(underline=True)
        runs = RichTextComposer().compose_all(
            [Emphasis(2, [Text("a")]), Text(" b "), Emphasis(1, [Text("c")])],
            inherited,
            merge=False,
        )
        runs[0].annotations.code = True
        runs[0].annotations.color = "blue"
        assert inherited == Annotations(underline=True)
        assert runs[1].annotations == Annotations(underline=True)
        assert runs[2].annotations == Annotations(underline=True, italic=True)

    def test_strikethrough_and_code(self):
        runs = _blocks("~~gone~~ `x`\n")[0].rich_text
        assert runs[0].annotations.strikethrough
        assert runs[-1].annotations.code

    def test_link(self):
        runs = _blocks("[site](https://example.com)\n")[0].rich_text
        assert runs[0].content == "site"
        assert runs[0].link == "https://example.com"

    def test_relative_link_is_plain_text(self):
        runs = _blocks("[other](other.md)\n")[0].rich_text
        assert runs[0].link is None

    def test_autolink(self):
        runs = _blocks("<https://example.com>\n")[0].rich_text
        assert runs[0].link == "https://example.com"

    def test_inline_math_run(self):
        runs = _blocks("Euler $e^{i\\pi}$\n")[0].rich_text
        assert runs[-1].equation == "e^{i\\pi}"

    def test_resolved_wikilink_is_mention(self):
        resolver = DictLinkResolver({"Other Note": "page-123"})
        runs = _blocks("See [[Other Note|that]]\n", resolver=resolver)[0].rich_text
        assert runs[-1].mention == Mention("page", id="page-123")
        assert runs[-1].content == "that"

    def test_unresolved_wikilink_placeholder(self):
        runs = _blocks("See [[Missing]]\n")[0].rich_text
        assert runs[-1].content == "[[Missing]]"
        assert runs[-1].annotations.color == "red"

    def test_unresolved_wikilink_text(self):
        config = TransformConfig(unresolved_link_style="text")
        runs = _blocks("See [[Missing]]\n", config=config)[0].rich_text
        assert _plain(runs) == "See Missing"

    def test_unresolved_wikilink_skip(self):
        config = TransformConfig(unresolved_link_style="skip")
        runs = _blocks("See [[Missing]]\n", config=config)[0].rich_text
        assert _plain(runs) == "See "

    def test_long_text_split_and_reassembled(self):
        content = "word " * 1000
        runs = RichTextComposer().compose(Text(content))
        assert all(len(run.content) <= NOTION_RICH_TEXT_LIMIT for run in runs)
        assert "".join(run.content for run in runs) == content


class TestSplitText:
    """Tests for content limit splitting."""

    def test_exactly_limit_is_one_segment(self):
        assert split_text("a" * 2000) == ["a" * 2000]

    def test_limit_plus_one_is_two_segments(self):
        segments = split_text("a" * 2001)
        assert len(segments) == 2
        assert "".join(segments) == "a" * 2001

    def test_prefers_last_newline(self):
        text = "a" * 1500 + "\n" + "b" * 600
        segments = split_text(text)
        assert segments[0] == "a" * 1500 + "\n"
        assert segments[1] == "b" * 600

    def test_never_splits_surrogate_pairs(self):
        text = "😀" * 1001
        segments = split_text(text)
        assert "".join(segments) == text
        assert segments[0] == "😀" * 1000

    def test_split_rich_text_keeps_styling(self):
        run = RichText(content="z" * 4500, link="https://x.test", annotations=Annotations(bold=True))
        parts = split_rich_text(run)
        assert len(parts) == 3
        assert all(p.annotations.bold and p.link == "https://x.test" for p in parts)
        assert parts[0].annotations is not parts[1].annotations

    def test_split_code_content_empty(self):
        assert [r.content for r in split_code_content("")] == [""]


# =============================================================================
# Property Mapper
# =============================================================================


class TestPropertyMapper:
    """Tests for front-matter -> properties."""

    def test_title_and_tags(self):
        props = PropertyMapper().to_properties({"title": "My Note"}, ["a", "b"])
        assert _plain(props["Name"].value) == "My Note"
        assert props["Tags"].value == ["a", "b"]

    def test_tags_record_value_merged(self):
        props = PropertyMapper().to_properties({"tags": ["a"]}, ["a", "c"])
        assert props["Tags"].value == ["a", "c"]

    def test_number_coercion(self):
        mapper = PropertyMapper([PropertyMapping("n", "N", PropertyType.NUMBER)])
        assert mapper.to_properties({"n": "42"})["N"].value == 42
        assert mapper.to_properties({"n": 3.5})["N"].value == 3.5
        assert "N" not in mapper.to_properties({"n": "lots"})

    def test_checkbox_coercion(self):
        mapper = PropertyMapper([PropertyMapping("done", "Done", PropertyType.CHECKBOX)])
        assert mapper.to_properties({"done": "yes"})["Done"].value is True
        assert mapper.to_properties({"done": "1"})["Done"].value is True
        assert mapper.to_properties({"done": "nope"})["Done"].value is False
        assert mapper.to_properties({"done": True})["Done"].value is True

    def test_dates(self):
        mapper = PropertyMapper([PropertyMapping("due", "Due Date", PropertyType.DATE)])
        assert mapper.to_properties({"due": date(2024, 1, 15)})["Due Date"].value == DateValue("2024-01-15")
        assert mapper.to_properties({"due": "01/15/2024"})["Due Date"].value.start == "2024-01-15"
        assert "Due Date" not in mapper.to_properties({"due": "someday"})

    @pytest.mark.parametrize("text,expected", [
        ("2024-01-15", "2024-01-15"),
        ("2024/01/15", "2024-01-15"),
        ("Jan 15, 2024", "2024-01-15"),
        ("January 5, 2024", "2024-01-05"),
        ("2024-01-15T10:30:00", "2024-01-15T10:30:00"),
        ("2024-01-15T10:30:00Z", "2024-01-15T10:30:00+00:00"),
    ])
    def test_parse_date_formats(self, text, expected):
        assert parse_date(text) == expected

    def test_missing_values_omitted(self):
        mapper = PropertyMapper(BUILTIN_MAPPINGS)
        props = mapper.to_properties({"title": "T"})
        assert set(props) == {"Name"}

    def test_page_parent_keeps_only_title(self):
        props = PropertyMapper(BUILTIN_MAPPINGS).to_properties(
            {"title": "T", "status": "open"}, ["x"])
        page_props = props.for_page_parent()
        assert list(page_props) == ["title"]
        assert page_props["title"].type == PropertyType.TITLE


class TestPropertyMapperReverse:
    """Tests for properties -> front-matter."""

    def test_round_trip(self):
        mapper = PropertyMapper()
        props = mapper.to_properties({"title": "My Note", "tags": ["a", "b"]}, ["a", "b"])
        record, tags = mapper.to_record(props)
        assert record["title"] == "My Note"
        assert tags == ["a", "b"]

    def test_unmapped_auto_typed_lowercase(self):
        props = PropertySet({
            "Name": PropertyValue(PropertyType.TITLE, [RichText("T")]),
            "Priority": PropertyValue(PropertyType.NUMBER, 2),
            "Flag": PropertyValue(PropertyType.CHECKBOX, False),
            "Empty": PropertyValue(PropertyType.MULTI_SELECT, []),
        })
        record, _ = PropertyMapper().to_record(props)
        assert record == {"title": "T", "priority": 2, "flag": False}

    def test_explicit_mapping_wins(self):
        props = PropertySet({
            "Name": PropertyValue(PropertyType.TITLE, [RichText("Mapped")]),
            "Title": PropertyValue(PropertyType.RICH_TEXT, [RichText("Auto")]),
        })
        record, _ = PropertyMapper().to_record(props)
        assert record["title"] == "Mapped"

    def test_property_from_notion(self):
        prop = property_from_notion({"type": "select", "select": {"name": "Done"}})
        assert prop == PropertyValue(PropertyType.SELECT, "Done")
        assert property_from_notion({"type": "formula", "formula": {}}) is None


class TestPropertyMappingConfig:
    """Tests for mapping helpers."""

    def test_type_aliases(self):
        assert property_type_from_string("text") == PropertyType.RICH_TEXT
        assert property_type_from_string("tags") == PropertyType.MULTI_SELECT
        assert property_type_from_string("bool") == PropertyType.CHECKBOX
        assert property_type_from_string("phone") == PropertyType.PHONE
        assert property_type_from_string("Select") == PropertyType.SELECT

    def test_unknown_type_raises(self):
        with pytest.raises(ConfigError):
            property_type_from_string("relation")

    def test_merge_overrides_by_record_key(self):
        override = PropertyMapping("title", "Title", PropertyType.TITLE)
        merged = merge_property_mappings(DEFAULT_MAPPINGS, [override])
        assert len(merged) == 2
        assert merged[0].notion_name == "Title"


# =============================================================================
# Reverse Transformer
# =============================================================================


class TestRenderRichText:
    """Tests for rich text -> Markdown."""

    def test_annotations_nest(self):
        run = RichText("x", annotations=Annotations(bold=True, italic=True))
        assert render_rich_text([run]) == "***x***"

    def test_highlight_and_link(self):
        runs = [
            RichText("hi", annotations=Annotations(color="yellow_background")),
            RichText(" "),
            RichText("site", link="https://example.com", annotations=Annotations(bold=True)),
        ]
        assert render_rich_text(runs) == "==hi== [**site**](https://example.com)"

    def test_whitespace_kept_outside_markers(self):
        run = RichText("bold ", annotations=Annotations(bold=True))
        assert render_rich_text([run]) == "**bold** "

    def test_page_mention_with_resolver(self):
        resolver = DictLinkResolver({"Projects/Plan.md": "abc"})
        run = RichText("Plan", mention=Mention("page", id="abc"))
        assert render_rich_text([run], resolver) == "[[Projects/Plan]]"

    def test_page_mention_without_resolver(self):
        run = RichText("Plan", mention=Mention("page", id="abc"))
        assert render_rich_text([run]) == "[[Plan]]"

    def test_page_mention_unknown_to_resolver(self):
        resolver = DictLinkResolver({"Other.md": "def"})
        run = RichText("Plan", mention=Mention("page", id="abc"))
        assert render_rich_text([run], resolver) == "[[Plan]]"

    def test_equation_run(self):
        assert render_rich_text([RichText("x^2", equation="x^2")]) == "$x^2$"

    def test_user_and_date_mentions(self):
        runs = [
            RichText("@Ada", mention=Mention("user", id="u1")),
            RichText(" on "),
            RichText("", mention=Mention("date", start="2024-01-15")),
        ]
        assert render_rich_text(runs) == "@Ada on 2024-01-15"


class TestReverseTransformer:
    """Tests for blocks -> Markdown."""

    def test_headings_and_paragraph(self):
        md = ReverseTransformer().blocks_to_markdown([
            HeadingBlock(level=2, rich_text=[RichText("Title")]),
            ParagraphBlock(rich_text=[RichText("Body")]),
        ])
        assert md == "## Title\n\nBody\n"

    def test_lists(self):
        md = ReverseTransformer().blocks_to_markdown([
            BulletedListItemBlock(rich_text=[RichText("a")], children=[
                BulletedListItemBlock(rich_text=[RichText("b")]),
            ]),
            ToDoBlock(rich_text=[RichText("c")], checked=True),
            ParagraphBlock(rich_text=[RichText("after")]),
        ])
        assert md == "- a\n  - b\n\n- [x] c\n\nafter\n"

    def test_table_escapes_pipes(self):
        table = TableBlock(width=2, has_column_header=True, children=[
            TableRowBlock(cells=[[RichText("A")], [RichText("B")]]),
            TableRowBlock(cells=[[RichText("1|2")], [RichText("3")]]),
        ])
        lines = ReverseTransformer().blocks_to_markdown([table]).strip().splitlines()
        assert lines == ["| A | B |", "| --- | --- |", "| 1\\|2 | 3 |"]

    def test_code_plain_text_untagged(self):
        md = ReverseTransformer().blocks_to_markdown([
            CodeBlock(rich_text=[RichText("x = 1")], language="plain text"),
        ])
        assert md == "```\nx = 1\n```\n"

    def test_callout_header(self):
        callout = CalloutBlock(
            rich_text=[RichText("Careful", annotations=Annotations(bold=True)), RichText("\nBody")],
            icon="🐛",
        )
        md = ReverseTransformer().blocks_to_markdown([callout])
        assert md == "> [!bug] Careful\n> Body\n"

    def test_callout_synonym_icon(self):
        md = ReverseTransformer().blocks_to_markdown([CalloutBlock(rich_text=[RichText("x")], icon="⚠️")])
        header = md.splitlines()[0]
        assert header in ("> [!warning]", "> [!caution]", "> [!attention]")

    def test_quote(self):
        md = ReverseTransformer().blocks_to_markdown([QuoteBlock(rich_text=[RichText("one\ntwo")])])
        assert md == "> one\n> two\n"

    def test_media_blocks(self):
        md = ReverseTransformer().blocks_to_markdown([
            BookmarkBlock(url="https://example.com"),
            EquationBlock(expression="x"),
            DividerBlock(),
        ])
        assert md == "<https://example.com>\n\n$$\nx\n$$\n\n---\n"

    def test_unsupported_block_comment(self):
        md = ReverseTransformer().blocks_to_markdown([UnsupportedBlock(kind="child_database")])
        assert md == "<!-- unsupported block: child_database -->\n"

    def test_every_block_type_has_renderer(self):
        assert set(ReverseTransformer()._renderers) == set(BlockType)

    def test_page_to_markdown_frontmatter(self):
        page = NotionPage(
            properties=PropertySet({
                "Name": PropertyValue(PropertyType.TITLE, [RichText("My Note")]),
                "Tags": PropertyValue(PropertyType.MULTI_SELECT, ["a"]),
            }),
            children=[ParagraphBlock(rich_text=[RichText("Body")])],
        )
        md = ReverseTransformer().page_to_markdown(page)
        assert md.startswith("---\ntags:\n- a\ntitle: My Note\n---\n\n")
        assert md.endswith("Body\n")

    def test_forward_then_reverse(self):
        source = "# Title\n\n- [ ] task\n\n> [!note] Heads up\n> Details\n\n```python\nx = 1\n```\n"
        md = ReverseTransformer().blocks_to_markdown(_blocks(source))
        assert "# Title" in md
        assert "- [ ] task" in md
        assert "> [!note] Heads up" in md
        assert "```python\nx = 1\n```" in md

    def test_untitled_callout_round_trip(self):
        md = ReverseTransformer().blocks_to_markdown(_blocks("> [!note]\n> Body text\n"))
        assert md == "> [!note]\n> Body text\n"

    def test_unresolvable_mention_keeps_wikilink(self):
        resolver = DictLinkResolver({"Other.md": "abc"})
        blocks = _blocks("See [[Other]]\n", resolver=resolver)
        assert ReverseTransformer().blocks_to_markdown(blocks) == "See [[Other]]\n"

    def test_heading_nested_in_list_item(self):
        md = ReverseTransformer().blocks_to_markdown([
            BulletedListItemBlock(rich_text=[RichText("a")], children=[
                HeadingBlock(level=3, rich_text=[RichText("Inner")]),
            ]),
        ])
        assert md.startswith("- a\n  ### Inner\n")


# =============================================================================
# Wire Codec
# =============================================================================


class TestWireCodec:
    """Tests for Notion JSON encoding/decoding."""

    def test_every_block_type_has_codec(self):
        assert set(_BLOCK_ENCODERS) == set(BlockType) - {BlockType.UNSUPPORTED}
        assert set(_BLOCK_DECODERS) == set(BlockType)

    def test_encode_paragraph(self):
        data = block_to_notion(ParagraphBlock(rich_text=[RichText("hi", annotations=Annotations(bold=True))]))
        assert data["type"] == "paragraph"
        assert data["paragraph"]["rich_text"] == [
            {"type": "text", "text": {"content": "hi"}, "annotations": {"bold": True}},
        ]

    def test_encode_nested_children(self):
        block = BulletedListItemBlock(rich_text=[RichText("a")], children=[DividerBlock()])
        data = block_to_notion(block)
        assert data["bulleted_list_item"]["children"][0]["type"] == "divider"

    def test_round_trip_every_kind(self):
        rows = [TableRowBlock(cells=[[RichText("a")], [RichText("b")]])]
        samples = [
            ParagraphBlock(rich_text=[RichText("p")], children=[DividerBlock()]),
            HeadingBlock(level=1, rich_text=[RichText("h1")]),
            HeadingBlock(level=2, rich_text=[RichText("h2")]),
            HeadingBlock(level=3, rich_text=[RichText("h3")]),
            BulletedListItemBlock(rich_text=[RichText("b")]),
            NumberedListItemBlock(rich_text=[RichText("n")]),
            ToDoBlock(rich_text=[RichText("t")], checked=True),
            ToggleBlock(rich_text=[RichText("tg")], children=[ParagraphBlock(rich_text=[RichText("in")])]),
            QuoteBlock(rich_text=[RichText("q")]),
            CalloutBlock(rich_text=[RichText("c")], icon="🐛", color="gray_background"),
            CodeBlock(rich_text=[RichText("x = 1")], language="python"),
            EquationBlock(expression="e=mc^2"),
            DividerBlock(),
            ImageBlock(url="https://example.com/a.png", caption=[RichText("cap")]),
            BookmarkBlock(url="https://example.com"),
            EmbedBlock(url="https://example.com/embed"),
            VideoBlock(url="https://example.com/v.mp4"),
            FileBlock(url="https://example.com/f.zip", name="f.zip"),
            PdfBlock(url="https://example.com/d.pdf"),
            TableBlock(width=2, has_column_header=True, children=rows),
            TableRowBlock(cells=[[RichText("r")]]),
            ColumnListBlock(children=[ColumnBlock(children=[ParagraphBlock(rich_text=[RichText("col")])])]),
            ColumnBlock(children=[]),
            SyncedBlock(children=[ParagraphBlock(rich_text=[RichText("s")])]),
        ]
        covered = {block.type for block in samples}
        assert covered == set(BlockType) - {BlockType.UNSUPPORTED}
        for block in samples:
            assert block_from_notion(block_to_notion(block)) == block

    def test_children_none_raises(self):
        with pytest.raises(TransformError):
            block_to_notion(ParagraphBlock(rich_text=[], children=None))

    def test_encode_unsupported_raises(self):
        with pytest.raises(TransformError):
            block_to_notion(UnsupportedBlock(kind="child_page"))

    def test_decode_callout(self):
        block = block_from_notion({
            "id": "b1",
            "type": "callout",
            "callout": {
                "rich_text": [{"type": "text", "text": {"content": "hey"}, "plain_text": "hey"}],
                "icon": {"type": "emoji", "emoji": "🐛"},
                "color": "gray_background",
            },
        })
        assert isinstance(block, CalloutBlock)
        assert block.icon == "🐛"
        assert block.id == "b1"

    def test_decode_unknown_kind(self):
        block = block_from_notion({"type": "child_database", "child_database": {"title": "DB"}})
        assert block == UnsupportedBlock(kind="child_database")

    def test_decode_children_on_leaf_raises(self):
        with pytest.raises(TransformError):
            block_from_notion({"type": "divider", "divider": {}, "_children": [
                {"type": "paragraph", "paragraph": {"rich_text": []}},
            ]})

    def test_decode_table(self):
        block = block_from_notion({
            "type": "table",
            "table": {"table_width": 1, "has_column_header": True},
            "_children": [{"type": "table_row", "table_row": {"cells": [[{"type": "text", "text": {"content": "A"}}]]}}],
        })
        assert isinstance(block, TableBlock)
        assert _plain(block.children[0].cells[0]) == "A"

    def test_decode_mention(self):
        block = block_from_notion({
            "type": "paragraph",
            "paragraph": {"rich_text": [{
                "type": "mention",
                "mention": {"type": "page", "page": {"id": "p1"}},
                "plain_text": "Other",
            }]},
        })
        assert block.rich_text[0].mention == Mention("page", id="p1")
        assert block.rich_text[0].content == "Other"


# =============================================================================
# Misc helpers
# =============================================================================


class TestHelpers:
    """Tests for path and reference helpers."""

    @pytest.mark.parametrize("url,expected", [
        ("images/a.png", True),
        ("file:///tmp/a.png", True),
        ("https://example.com/a.png", False),
        ("data:image/png;base64,AAAA", False),
    ])
    def test_is_local_path(self, url, expected):
        assert is_local_path(url) is expected

    def test_normalize_page_ref_url(self):
        ref = "https://www.notion.so/workspace/My-Page-0123456789abcdef0123456789abcdef?pvs=4"
        assert normalize_page_ref(ref) == "01234567-89ab-cdef-0123-456789abcdef"

    def test_normalize_page_ref_invalid(self):
        with pytest.raises(ValueError):
            normalize_page_ref("not-a-page")

    def test_resolver_case_insensitive(self):
        resolver = DictLinkResolver({"My Note.md": "id-1"})
        assert resolver.resolve("my note") == ("id-1", True)
        assert resolver.resolve("nope") == ("", False)
        assert resolver.lookup_path("id-1") == ("My Note", True)

    def test_preview_tool(self):
        result = json.loads(note_preview("---\ntitle: T\n---\n# Hi\n"))
        assert result["children"][0]["type"] == "heading_1"
        assert result["properties"]["Name"]["title"][0]["text"]["content"] == "T"


# =============================================================================
# Configuration
# =============================================================================


class TestConfig:
    """Tests for YAML config loading."""

    def test_load_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NOTION_TEST_TOKEN", "secret-token")
        path = tmp_path / "sync.yaml"
        path.write_text(
            "notion:\n"
            "  token: ${NOTION_TEST_TOKEN}\n"
            "  default_page: page-1\n"
            "transform:\n"
            "  unresolved_links: text\n"
            "  callouts:\n"
            "    warning: \"🚧\"\n"
            "properties:\n"
            "  - obsidian: status\n"
            "    notion: Status\n"
            "    type: select\n"
            "links:\n"
            "  Home: page-2\n"
            "rate_limit:\n"
            "  requests_per_second: 2\n"
            "  batch_size: 50\n",
            encoding="utf-8",
        )
        config = load_config(path)
        assert config.token == "secret-token"
        assert config.default_page == "page-1"
        assert config.transform.unresolved_link_style == "text"
        assert config.transform.callout_icons["warning"] == "🚧"
        assert config.transform.callout_icons["note"] == "💡"
        assert PropertyMapping("status", "Status", PropertyType.SELECT) in config.property_mappings
        assert config.links == {"Home": "page-2"}
        assert config.batch_size == 50

    def test_defaults(self):
        config = config_from_dict({})
        assert config.requests_per_second == 3.0
        assert config.batch_size == 100
        assert config.transform.unresolved_link_style == "placeholder"

    def test_invalid_unresolved_style(self):
        with pytest.raises(ConfigError):
            config_from_dict({"transform": {"unresolved_links": "explode"}})

    def test_invalid_batch_size(self):
        with pytest.raises(ConfigError):
            config_from_dict({"rate_limit": {"batch_size": 500}})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.yaml")


# =============================================================================
# Notion Client
# =============================================================================


class _FakeNotion:
    """Records requests and serves canned responses for httpx.MockTransport."""

    def __init__(self, fail_on=None):
        self.requests: list[tuple[str, str, dict]] = []
        self.fail_on = fail_on

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        path = request.url.path.removeprefix("/v1")
        self.requests.append((request.method, path, body))

        if self.fail_on and self.fail_on == (request.method, path.split("/")[1]):
            return httpx.Response(500, json={"message": "boom"})

        if request.method == "POST" and path == "/pages":
            return httpx.Response(200, json={"id": "new-page"})
        if request.method == "GET" and path.startswith("/pages/"):
            return httpx.Response(200, json={
                "id": "page-1",
                "parent": {"type": "page_id", "page_id": "root"},
                "properties": {
                    "title": {"type": "title", "title": [
                        {"type": "text", "text": {"content": "Pulled"}, "plain_text": "Pulled"},
                    ]},
                },
            })
        if request.method == "GET" and path.endswith("/children"):
            if request.url.params.get("start_cursor") == "c2":
                return httpx.Response(200, json={"results": [
                    {"id": "b2", "type": "divider", "divider": {}, "has_children": False},
                ], "has_more": False})
            if path == "/blocks/b1/children":
                return httpx.Response(200, json={"results": [
                    {"id": "b1a", "type": "paragraph", "has_children": False,
                     "paragraph": {"rich_text": [{"type": "text", "text": {"content": "nested"}}]}},
                ], "has_more": False})
            return httpx.Response(200, json={"results": [
                {"id": "b1", "type": "bulleted_list_item", "has_children": True,
                 "bulleted_list_item": {"rich_text": [{"type": "text", "text": {"content": "item"}}]}},
            ], "has_more": True, "next_cursor": "c2"})
        return httpx.Response(200, json={"results": []})


def _client(fake: _FakeNotion, batch_size: int = 100) -> NotionClient:
    return NotionClient(
        "token", requests_per_second=0, batch_size=batch_size,
        transport=httpx.MockTransport(fake),
    )


class TestNotionClient:
    """Tests for NotionClient against a mock transport."""

    def test_create_page_batches_children(self):
        fake = _FakeNotion()
        page = NotionPage(
            properties=PropertyMapper().to_properties({"title": "T"}),
            children=[ParagraphBlock(rich_text=[RichText(str(i))]) for i in range(150)],
        )

        async def run():
            async with _client(fake) as client:
                return await client.create_page(page, database_id="db-1")

        result = asyncio.run(run())
        assert result["id"] == "new-page"
        (m1, p1, b1), (m2, p2, b2) = fake.requests
        assert (m1, p1) == ("POST", "/pages")
        assert b1["parent"] == {"database_id": "db-1"}
        assert len(b1["children"]) == 100
        assert (m2, p2) == ("PATCH", "/blocks/new-page/children")
        assert len(b2["children"]) == 50

    def test_append_children_batches_of_100(self):
        fake = _FakeNotion()
        blocks = [DividerBlock() for _ in range(250)]

        async def run():
            async with _client(fake) as client:
                await client.append_children("parent", blocks)

        asyncio.run(run())
        assert [len(body["children"]) for _, _, body in fake.requests] == [100, 100, 50]
        assert all(path == "/blocks/parent/children" for _, path, _ in fake.requests)

    def test_create_under_page_keeps_only_title(self):
        fake = _FakeNotion()
        page = NotionPage(properties=PropertyMapper().to_properties({"title": "T"}, ["x"]))

        async def run():
            async with _client(fake) as client:
                await client.create_page(page, parent_page_id="p-1")

        asyncio.run(run())
        body = fake.requests[0][2]
        assert list(body["properties"]) == ["title"]

    def test_create_requires_one_parent(self):
        async def run():
            async with _client(_FakeNotion()) as client:
                await client.create_page(NotionPage())

        with pytest.raises(ValueError):
            asyncio.run(run())

    def test_update_page_sequence(self):
        fake = _FakeNotion()
        page = NotionPage(
            properties=PropertyMapper().to_properties({"title": "T"}),
            children=[DividerBlock()],
        )

        async def run():
            async with _client(fake) as client:
                await client.update_page("page-1", page)

        asyncio.run(run())
        methods = [(method, path) for method, path, _ in fake.requests]
        assert methods[0] == ("GET", "/pages/page-1")
        assert methods[1] == ("PATCH", "/pages/page-1")
        assert ("DELETE", "/blocks/b1") in methods
        assert ("DELETE", "/blocks/b2") in methods
        assert methods[-1] == ("PATCH", "/blocks/page-1/children")

    def test_update_page_reports_stage(self):
        fake = _FakeNotion(fail_on=("DELETE", "blocks"))

        async def run():
            async with _client(fake) as client:
                await client.update_page("page-1", NotionPage())

        with pytest.raises(NotionAPIError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.stage == "delete_children"
        assert exc_info.value.status_code == 500

    def test_fetch_page_decodes_tree(self):
        fake = _FakeNotion()

        async def run():
            async with _client(fake) as client:
                return await client.fetch_page("page-1")

        page = asyncio.run(run())
        assert page.title == "Pulled"
        assert [b.type for b in page.children] == [BlockType.BULLETED_LIST_ITEM, BlockType.DIVIDER]
        assert _plain(page.children[0].children[0].rich_text) == "nested"

    def test_push_and_pull(self):
        fake = _FakeNotion()

        async def run():
            async with _client(fake) as client:
                created = await push_note(client, "---\ntitle: Pushed\n---\nHello\n", parent_page_id="root")
                pulled = await pull_page(client, "page-1")
                return created, pulled

        created, pulled = asyncio.run(run())
        assert created["id"] == "new-page"
        create_body = fake.requests[0][2]
        assert create_body["children"][0]["paragraph"]["rich_text"][0]["text"]["content"] == "Hello"
        assert pulled.startswith("---\n")
        assert "- item\n  nested\n" in pulled
