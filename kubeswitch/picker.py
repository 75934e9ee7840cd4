"""Full-screen fuzzy picker with hot reload and a lazy preview pane."""

from __future__ import annotations

import asyncio
import logging
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from prompt_toolkit.application import Application
from prompt_toolkit.buffer import Buffer
from prompt_toolkit.filters import Condition
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import (
    ConditionalContainer,
    HSplit,
    Layout,
    VSplit,
    Window,
)
from prompt_toolkit.layout.controls import BufferControl, FormattedTextControl
from prompt_toolkit.layout.dimension import Dimension
from prompt_toolkit.styles import Style

logger = logging.getLogger("kubeswitch.picker")

T = TypeVar("T")

_WORD_BOUNDARIES = "/-_.:@ "

PICKER_STYLE = Style.from_dict(
    {
        "selected": "reverse bold",
        "prompt": "#00aa00 bold",
        "status": "#888888",
        "warning": "#aaaa00 bold",
        "preview": "",
    }
)


def fuzzy_score(query: str, text: str) -> Optional[int]:
    """Score ``text`` against ``query`` as a case-insensitive subsequence.

    Returns ``None`` when ``query`` is not a subsequence. Consecutive
    matches and matches at word starts score higher.
    """
    if not query:
        return 0
    haystack = text.lower()
    score = 0
    pos = -1
    last = -2
    for char in query.lower():
        pos = haystack.find(char, pos + 1)
        if pos < 0:
            return None
        score += 1
        if pos == last + 1:
            score += 3
        if pos == 0 or haystack[pos - 1] in _WORD_BOUNDARIES:
            score += 2
        last = pos
    return score


def filter_items(query: str, labels: List[str]) -> List[int]:
    """Indices of matching labels, best score first and stable otherwise."""
    scored: List[Tuple[int, int]] = []
    for idx, label in enumerate(labels):
        score = fuzzy_score(query, label)
        if score is not None:
            scored.append((-score, idx))
    scored.sort()
    return [idx for _, idx in scored]


class Picker(Generic[T]):
    """Pick one item from a list that may keep growing while shown."""

    def __init__(
        self,
        label: Callable[[T], str] = str,
        preview: Optional[Callable[[T], Awaitable[str]]] = None,
        show_preview: bool = True,
        prompt: str = "> ",
        items: Iterable[T] = (),
        input=None,
        output=None,
    ):
        self._label = label
        self._preview_fn = preview
        self._show_preview = show_preview and preview is not None
        self._prompt = prompt
        self.items: List[T] = []
        self._labels: List[str] = []
        self._visible: List[int] = []
        self._cursor = 0
        self._status = ""
        self._warning = ""
        self._loading = True
        self._previews: Dict[int, str] = {}
        self._preview_task: Optional[asyncio.Task] = None

        self.query = Buffer(
            multiline=False, on_text_changed=lambda _: self._refilter(keep_selection=False)
        )
        self.app: Application = Application(
            layout=self._build_layout(),
            key_bindings=self._build_key_bindings(),
            style=PICKER_STYLE,
            full_screen=True,
            input=input,
            output=output,
        )
        for item in items:
            self.add(item)

    # ------------------------------------------------------------------ #
    # Layout
    # ------------------------------------------------------------------ #

    def _build_layout(self) -> Layout:
        list_window = Window(FormattedTextControl(self._render_list), wrap_lines=False)
        status_window = Window(FormattedTextControl(self._render_status), height=1)
        query_window = VSplit(
            [
                Window(
                    FormattedTextControl(lambda: FormattedText([("class:prompt", self._prompt)])),
                    width=len(self._prompt),
                ),
                Window(BufferControl(buffer=self.query), height=1),
            ],
            height=1,
        )
        preview_window = ConditionalContainer(
            VSplit(
                [
                    Window(width=1, char="│"),
                    Window(FormattedTextControl(self._render_preview), wrap_lines=True),
                ],
                width=Dimension(weight=1),
            ),
            filter=Condition(lambda: self._show_preview),
        )
        body = VSplit(
            [HSplit([list_window, status_window, query_window], width=Dimension(weight=1)), preview_window]
        )
        return Layout(body, focused_element=self.query)

    def _build_key_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        @kb.add("up")
        @kb.add("c-p")
        def _(event):
            self._move(1)

        @kb.add("down")
        @kb.add("c-n")
        def _(event):
            self._move(-1)

        @kb.add("enter")
        def _(event):
            selected = self.selected()
            if selected is not None:
                event.app.exit(result=selected)

        @kb.add("escape", eager=True)
        @kb.add("c-c")
        @kb.add("c-q")
        def _(event):
            event.app.exit(result=None)

        return kb

    # ------------------------------------------------------------------ #
    # Rendering
    # ------------------------------------------------------------------ #

    def _render_list(self) -> FormattedText:
        height = 20
        info = self.app.output.get_size() if self.app.is_running else None
        if info is not None:
            height = max(info.rows - 2, 1)
        window = self._visible[: max(height, self._cursor + 1)]
        padding = max(height - len(window), 0)
        lines: List[Tuple[str, str]] = [("", "\n" * padding)]
        # best matches at the bottom, next to the query line
        for pos in reversed(range(len(window))):
            style = "class:selected" if pos == self._cursor else ""
            marker = "> " if pos == self._cursor else "  "
            newline = "\n" if pos else ""
            lines.append((style, f"{marker}{self._labels[window[pos]]}{newline}"))
        return FormattedText(lines)

    def _render_status(self) -> FormattedText:
        parts = [("class:status", f"  {len(self._visible)}/{len(self.items)}")]
        if self._loading:
            parts.append(("class:status", " (searching)"))
        if self._status:
            parts.append(("class:status", f" {self._status}"))
        if self._warning:
            parts.append(("class:warning", f" {self._warning}"))
        return FormattedText(parts)

    def _render_preview(self) -> FormattedText:
        idx = self._selected_index()
        if idx is None:
            return FormattedText([])
        return FormattedText([("class:preview", self._previews.get(idx, ""))])

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    def _selected_index(self) -> Optional[int]:
        if not self._visible:
            return None
        return self._visible[min(self._cursor, len(self._visible) - 1)]

    def selected(self) -> Optional[T]:
        idx = self._selected_index()
        return None if idx is None else self.items[idx]

    def _move(self, delta: int) -> None:
        if not self._visible:
            return
        self._cursor = max(0, min(self._cursor + delta, len(self._visible) - 1))
        self._request_preview()

    def _refilter(self, keep_selection: bool = True) -> None:
        previous = self._selected_index() if keep_selection else None
        self._visible = filter_items(self.query.text, self._labels)
        if previous is not None and previous in self._visible:
            self._cursor = self._visible.index(previous)
        else:
            self._cursor = 0
        self._request_preview()
        self.app.invalidate()

    def add(self, item: T) -> None:
        """Append an item; it becomes selectable on the next redraw."""
        self.items.append(item)
        self._labels.append(self._label(item))
        self._refilter()

    def set_status(self, text: str) -> None:
        self._status = text
        self.app.invalidate()

    def warn(self, text: str) -> None:
        self._warning = text
        self.app.invalidate()

    def _request_preview(self) -> None:
        if not self._show_preview or not self.app.is_running:
            return
        idx = self._selected_index()
        if idx is None or idx in self._previews:
            return
        if self._preview_task is not None and not self._preview_task.done():
            self._preview_task.cancel()
        self._preview_task = self.app.create_background_task(self._load_preview(idx))

    async def _load_preview(self, idx: int) -> None:
        try:
            text = await self._preview_fn(self.items[idx])
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("preview failed: %s", exc)
            text = ""
        self._previews[idx] = text
        self.app.invalidate()

    async def _consume(self, source: AsyncIterator[T]) -> None:
        try:
            async for item in source:
                self.add(item)
        finally:
            self._loading = False
            self.app.invalidate()

    async def run(self, source: Optional[AsyncIterator[T]] = None) -> Optional[T]:
        """Show the picker while consuming ``source``; ``None`` means aborted."""
        if source is None:
            self._loading = False
        consumer = asyncio.create_task(self._consume(source)) if source is not None else None
        self.app.pre_run_callables.append(self._request_preview)
        try:
            return await self.app.run_async()
        finally:
            if consumer is not None and not consumer.done():
                consumer.cancel()
                await asyncio.gather(consumer, return_exceptions=True)
