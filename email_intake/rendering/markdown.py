"""
Markdown to email-safe HTML renderer.

Email clients disagree on almost all layout CSS but all of them render
nested tables, so every block becomes a role="presentation" table with
inline styles. Rendering is two-phase: the input is tokenized into blocks
first, then each block is rendered and inline formatting is applied to its
text. Emitted HTML never flows back into the tokenizer.

Malformed input never raises. Anything that does not parse as a block
degrades to paragraph text.
"""

import re
from dataclasses import dataclass, field

# Blocks

_HEADING_RE = re.compile(r"^\s{0,3}(#{1,6})\s+(.*?)\s*#*\s*$")
_RULE_RE = re.compile(r"^\s*(-{3,}|\*{3,}|_{3,})\s*$")
_BULLET_RE = re.compile(r"^\s*[-*+]\s+")
_NUMBER_RE = re.compile(r"^\s*(\d+)[.)]\s+")
_TABLE_SEPARATOR_RE = re.compile(r"^\s*\|?\s*:?-+:?\s*(\|\s*:?-+:?\s*)*\|?\s*$")

# Inline

_ENTITY_SAFE_AMP_RE = re.compile(r"&(?!(?:[a-zA-Z][a-zA-Z0-9]*|#\d+|#[xX][0-9a-fA-F]+);)")
_CODE_OR_LINK_RE = re.compile(r"`([^`]+)`|\[([^\]]+)\]\((https?://[^\s)]+)\)")
_PLACEHOLDER_RE = re.compile("\x00(\\d+)\x00")
_BOLD_ITALIC_RE = re.compile(r"\*\*\*(?!\s)(.+?)(?<!\s)\*\*\*")
_BOLD_RE = re.compile(r"\*\*(?!\s)(.+?)(?<!\s)\*\*|__(?!\s)(.+?)(?<!\s)__")
_ITALIC_STAR_RE = re.compile(r"(?<!\*)\*(?![\s*])(.+?)(?<![\s*])\*(?!\*)")
_ITALIC_UNDERSCORE_RE = re.compile(r"(?<![\w_])_(?![\s_])(.+?)(?<![\s_])_(?![\w_])")

CODE_FONT = (
    "ui-monospace, SFMono-Regular, Menlo, Monaco, Consolas, "
    "'Liberation Mono', 'Courier New', monospace"
)
LINK_COLOR = "#2563eb"
TABLE_HEADER_BG = "#f8f9fa"
TABLE_STRIPE_BG = "#fcfcfd"


@dataclass(frozen=True)
class RenderStyle:
    font_family: str = "Inter, Arial, sans-serif"
    font_size: str = "16px"
    line_height: str = "24px"
    text_color: str = "#111827"
    table_border_color: str = "#e5e7eb"
    header_color: str = "#111827"


@dataclass(frozen=True)
class Heading:
    level: int  # 2 or 3
    text: str


@dataclass(frozen=True)
class Paragraph:
    text: str


@dataclass(frozen=True)
class Rule:
    pass


@dataclass(frozen=True)
class ListBlock:
    ordered: bool
    items: list[str]
    start: int = 1


@dataclass(frozen=True)
class Table:
    headers: list[str]
    rows: list[list[str]] = field(default_factory=list)


Block = Heading | Paragraph | Rule | ListBlock | Table


@dataclass(frozen=True)
class RenderedContent:
    html: str
    text: str


def escape_html(text: str) -> str:
    """
    Escape text for HTML exactly once.

    An ampersand that already starts a valid entity is left alone, so
    escaping escaped text is a no-op.
    """
    text = _ENTITY_SAFE_AMP_RE.sub("&amp;", text)
    return (
        text.replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#39;")
    )


def split_table_row(line: str) -> list[str]:
    """Split a pipe-table row into trimmed cells."""
    row = line.strip()
    if row.startswith("|"):
        row = row[1:]
    if row.endswith("|"):
        row = row[:-1]
    return [cell.strip() for cell in row.split("|")]


def is_table_start(lines: list[str], index: int) -> bool:
    """A table needs a pipe header immediately followed by a dashed separator line."""
    if index + 1 >= len(lines):
        return False
    return lines[index].lstrip().startswith("|") and bool(
        _TABLE_SEPARATOR_RE.match(lines[index + 1])
    )


def tokenize(markdown: str) -> list[Block]:
    """Split markdown into block tokens. Blank lines only separate blocks."""
    lines = markdown.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    blocks: list[Block] = []
    paragraph: list[str] = []

    def flush_paragraph():
        if paragraph:
            blocks.append(Paragraph(" ".join(paragraph)))
            paragraph.clear()

    i = 0
    while i < len(lines):
        line = lines[i]

        if not line.strip():
            flush_paragraph()
            i += 1
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            flush_paragraph()
            level = 2 if len(heading.group(1)) <= 2 else 3
            blocks.append(Heading(level, heading.group(2)))
            i += 1
            continue

        # Checked before lists so "***" and "---" are not read as bullets
        if _RULE_RE.match(line):
            flush_paragraph()
            blocks.append(Rule())
            i += 1
            continue

        if _BULLET_RE.match(line) or _NUMBER_RE.match(line):
            flush_paragraph()
            ordered = bool(_NUMBER_RE.match(line))
            pattern = _NUMBER_RE if ordered else _BULLET_RE
            start = int(_NUMBER_RE.match(line).group(1)) if ordered else 1
            items = []
            while i < len(lines) and pattern.match(lines[i]) and not _RULE_RE.match(lines[i]):
                items.append(pattern.sub("", lines[i], count=1).strip())
                i += 1
            blocks.append(ListBlock(ordered=ordered, items=items, start=start))
            continue

        if is_table_start(lines, i):
            flush_paragraph()
            headers = split_table_row(lines[i])
            i += 2
            rows = []
            while i < len(lines) and lines[i].lstrip().startswith("|"):
                cells = split_table_row(lines[i])
                # Normalize every row to the header's column count
                cells = (cells + [""] * len(headers))[: len(headers)]
                rows.append(cells)
                i += 1
            blocks.append(Table(headers, rows))
            continue

        paragraph.append(line.strip())
        i += 1

    flush_paragraph()
    return blocks


class MarkdownRenderer:
    """Renders markdown into table-based email HTML."""

    def __init__(self, style: RenderStyle | None = None):
        self.style = style or RenderStyle()

    def render(self, markdown: str) -> RenderedContent:
        """Render markdown to an HTML body fragment plus its plain-text counterpart."""
        if not markdown or not markdown.strip():
            return RenderedContent(html="", text="")
        return RenderedContent(html=self.render_html(markdown), text=to_plain_text(markdown))

    def render_html(self, markdown: str) -> str:
        return "".join(self._render_block(block) for block in tokenize(markdown or ""))

    def _render_block(self, block: Block) -> str:
        if isinstance(block, Heading):
            if block.level == 2:
                return self._heading(block.text, 20, 28)
            return self._heading(block.text, 18, 26)
        if isinstance(block, Rule):
            return self._rule()
        if isinstance(block, ListBlock):
            return self._list(block)
        if isinstance(block, Table):
            return self._table(block)
        return self._paragraph(block.text)

    # Block HTML

    def _text_cell_style(self, padding: str = "0 0 12px 0") -> str:
        s = self.style
        return (
            f"padding:{padding};font-family:{s.font_family};font-size:{s.font_size};"
            f"line-height:{s.line_height};color:{s.text_color};mso-line-height-rule:exactly;"
        )

    def _heading(self, text: str, size: int, line_height: int) -> str:
        s = self.style
        return (
            '\n<table role="presentation" width="100%" border="0" cellpadding="0" cellspacing="0" '
            'style="margin:0;padding:0;">\n'
            "  <tr>\n"
            f'    <td align="left" valign="top" style="padding:20px 0 8px 0;font-family:{s.font_family};'
            f"font-size:{size}px;line-height:{line_height}px;color:{s.header_color};"
            'font-weight:700;mso-line-height-rule:exactly;">\n'
            f"      {self.inline(text)}\n"
            "    </td>\n"
            "  </tr>\n"
            "</table>"
        )

    def _paragraph(self, text: str) -> str:
        return (
            '\n<table role="presentation" width="100%" border="0" cellpadding="0" cellspacing="0" '
            'style="margin:0;padding:0;">\n'
            "  <tr>\n"
            f'    <td align="left" valign="top" style="{self._text_cell_style()}">\n'
            f"      {self.inline(text)}\n"
            "    </td>\n"
            "  </tr>\n"
            "</table>"
        )

    def _rule(self) -> str:
        return (
            '\n<table role="presentation" width="100%" border="0" cellpadding="0" cellspacing="0" '
            'style="margin:0;padding:16px 0;">\n'
            "  <tr>\n"
            '    <td style="height:1px;line-height:1px;mso-line-height-rule:exactly;'
            f'background:{self.style.table_border_color};">&nbsp;</td>\n'
            "  </tr>\n"
            "</table>"
        )

    def _list(self, block: ListBlock) -> str:
        items = "".join(
            f'<li style="margin:0 0 8px 0;mso-line-height-rule:exactly;">{self.inline(item)}</li>'
            for item in block.items
        )
        if block.ordered:
            start = f' start="{block.start}"' if block.start != 1 else ""
            opening = f'<ol{start} style="margin:0;padding:0 0 0 20px;">'
            closing = "</ol>"
        else:
            opening = '<ul style="margin:0;padding:0 0 0 20px;list-style-type:disc;">'
            closing = "</ul>"

        return (
            '\n<table role="presentation" width="100%" border="0" cellpadding="0" cellspacing="0">\n'
            "  <tr>\n"
            f'    <td align="left" valign="top" style="{self._text_cell_style()}">\n'
            f"      {opening}{items}{closing}\n"
            "    </td>\n"
            "  </tr>\n"
            "</table>"
        )

    def _table(self, block: Table) -> str:
        s = self.style
        cell = (
            f"padding:10px;border:1px solid {s.table_border_color};font-family:{s.font_family};"
            "font-size:14px;line-height:20px;"
        )

        header_cells = "".join(
            f'<th align="left" valign="top" bgcolor="{TABLE_HEADER_BG}" style="{cell}'
            f"color:{s.header_color};font-weight:700;background-color:{TABLE_HEADER_BG};"
            f'mso-line-height-rule:exactly;">{self.inline(h) or "&nbsp;"}</th>'
            for h in block.headers
        )

        rows = []
        for index, row in enumerate(block.rows):
            cells = "".join(
                f'<td align="left" valign="top" style="{cell}color:{s.text_color};'
                f'mso-line-height-rule:exactly;">{self.inline(value) or "&nbsp;"}</td>'
                for value in row
            )
            stripe = f' bgcolor="{TABLE_STRIPE_BG}"' if index % 2 else ""
            rows.append(f"<tr{stripe}>{cells}</tr>")

        return (
            '\n<table role="presentation" width="100%" border="0" cellpadding="0" cellspacing="0" '
            'style="margin:0 0 16px 0;border-collapse:collapse;">\n'
            f"  <tr>{header_cells}</tr>\n"
            f"  {''.join(rows)}\n"
            "</table>"
        )

    # Inline HTML

    def inline(self, text: str) -> str:
        """
        Apply inline formatting to raw text.

        Code spans and links are swapped for placeholders first, so emphasis
        markers inside them, or inside an href, are never touched while
        emphasis wrapped around a whole span still applies. Every text
        segment is escaped exactly once.
        """
        spans: list[str] = []

        def stash(match: re.Match) -> str:
            code, label, href = match.groups()
            if code is not None:
                spans.append(
                    f'<code style="font-family:{CODE_FONT};font-size:0.95em;">'
                    f"{escape_html(code)}</code>"
                )
            else:
                spans.append(
                    f'<a href="{escape_html(href)}" style="color:{LINK_COLOR};'
                    f'text-decoration:underline;">{_emphasis(escape_html(label))}</a>'
                )
            return f"\x00{len(spans) - 1}\x00"

        text = _CODE_OR_LINK_RE.sub(stash, text.replace("\x00", ""))
        text = _emphasis(escape_html(text))
        return _PLACEHOLDER_RE.sub(lambda m: spans[int(m.group(1))], text)


def _emphasis(text: str) -> str:
    """Bold before italic, so "**x**" is never read as two italic markers."""
    text = _BOLD_ITALIC_RE.sub(r"<strong><em>\1</em></strong>", text)
    text = _BOLD_RE.sub(lambda m: f"<strong>{m.group(1) or m.group(2)}</strong>", text)
    text = _ITALIC_STAR_RE.sub(r"<em>\1</em>", text)
    text = _ITALIC_UNDERSCORE_RE.sub(r"<em>\1</em>", text)
    return text


# Plain text

_PLAIN_LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+)\)")
_PLAIN_CODE_RE = re.compile(r"`([^`]+)`")
_PLAIN_BOLD_RE = re.compile(r"\*\*\*(.+?)\*\*\*|\*\*(.+?)\*\*|__(.+?)__")
_PLAIN_ITALIC_RE = re.compile(r"(?<!\*)\*(?![\s*])([^*\n]+?)(?<![\s*])\*(?!\*)|(?<![\w_])_(?![\s_])([^_\n]+?)(?<![\s_])_(?![\w_])")


def _strip_inline(text: str) -> str:
    text = _PLAIN_CODE_RE.sub(r"\1", text)
    text = _PLAIN_LINK_RE.sub(r"\1 (\2)", text)
    text = _PLAIN_BOLD_RE.sub(lambda m: m.group(1) or m.group(2) or m.group(3), text)
    text = _PLAIN_ITALIC_RE.sub(lambda m: m.group(1) or m.group(2), text)
    return text


def to_plain_text(markdown: str) -> str:
    """
    Derive plain text from the source markdown, not from rendered HTML.

    Emphasis markers are stripped, bullets become "• ", pipe tables become
    tab-separated rows and links become "text (url)".
    """
    if not markdown or not markdown.strip():
        return ""

    lines = markdown.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    out: list[str] = []

    i = 0
    while i < len(lines):
        line = lines[i]

        if is_table_start(lines, i):
            out.append("\t".join(_strip_inline(c) for c in split_table_row(line)))
            i += 2
            while i < len(lines) and lines[i].lstrip().startswith("|"):
                out.append("\t".join(_strip_inline(c) for c in split_table_row(lines[i])))
                i += 1
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            out.append(_strip_inline(heading.group(2)))
        elif _RULE_RE.match(line):
            out.append("-" * 20)
        elif _BULLET_RE.match(line):
            out.append("• " + _strip_inline(_BULLET_RE.sub("", line, count=1).strip()))
        else:
            out.append(_strip_inline(line.rstrip()))
        i += 1

    text = "\n".join(out)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


_default_renderer = MarkdownRenderer()


def render(markdown: str) -> RenderedContent:
    """Render markdown with the default style."""
    return _default_renderer.render(markdown)
