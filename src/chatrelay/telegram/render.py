from __future__ import annotations

import re
from typing import Any

from markdown_it import MarkdownIt
from sulguk import transform_html

_MD_RENDERER = MarkdownIt("commonmark", {"html": False})
_BULLET_RE = re.compile(r"(?m)^(\s*)•")


def render_markdown(md: str) -> tuple[str, list[dict[str, Any]]]:
    """Render markdown into Telegram text plus message entities."""
    html = _MD_RENDERER.render(md or "")
    rendered = transform_html(html)
    text = _BULLET_RE.sub(r"\1-", rendered.text)
    entities = [dict(e) for e in rendered.entities]
    return text, entities
