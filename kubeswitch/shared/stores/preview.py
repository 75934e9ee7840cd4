"""Plain-text preview trees for cloud stores."""

from __future__ import annotations

import io
from typing import Iterable

from rich.console import Console
from rich.text import Text
from rich.tree import Tree


def render_tree(title: str, lines: Iterable[str], width: int = 100) -> str:
    # Text keeps "[...]" in values from being read as console markup
    tree = Tree(Text(title))
    for line in lines:
        tree.add(Text(line))
    buffer = io.StringIO()
    Console(file=buffer, width=width, color_system=None, highlight=False).print(tree)
    return buffer.getvalue()
