"""UI elements returned by bridge queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, Optional, Sequence, Tuple, overload

from .errors import CalabashError, ElementIndexError, ErrorCode

if TYPE_CHECKING:
    from .bridge import CalabashBridge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UIElement:
    """Snapshot of one on-device view as reported by the helper process."""

    element_class: str
    text: Optional[str] = None
    content_description: Optional[str] = None
    resource_id: Optional[str] = None
    rect: Dict[str, int] = field(default_factory=dict)
    ref: Any = None
    children: Tuple["UIElement", ...] = field(default=(), repr=False)
    bridge: Optional["CalabashBridge"] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_descriptor(
        cls, descriptor: Dict[str, Any], bridge: Optional["CalabashBridge"] = None
    ) -> "UIElement":
        """Build an element (and its children, if any) from a helper descriptor."""
        return cls(
            element_class=descriptor.get("class", ""),
            text=descriptor.get("text"),
            content_description=descriptor.get("contentDescription"),
            resource_id=descriptor.get("id"),
            rect=dict(descriptor.get("rect") or {}),
            ref=descriptor.get("ref"),
            children=tuple(
                cls.from_descriptor(child, bridge) for child in descriptor.get("children") or ()
            ),
            bridge=bridge,
        )

    def _require_bridge(self) -> "CalabashBridge":
        if self.bridge is None:
            raise CalabashError(
                f"{self.element_class} element is not bound to a bridge session",
                ErrorCode.BRIDGE_NOT_STARTED,
            )
        return self.bridge

    async def touch(self) -> None:
        await self._require_bridge().touch(self)

    async def set_text(self, value: str) -> None:
        await self._require_bridge().set_text(self, value)


class UIElements(Sequence[UIElement]):
    """Ordered, read-only result of one query evaluation."""

    def __init__(self, elements: Iterable[UIElement] = (), selector: str = "") -> None:
        self._elements = tuple(elements)
        self.selector = selector

    @overload
    def __getitem__(self, index: int) -> UIElement: ...

    @overload
    def __getitem__(self, index: slice) -> "UIElements": ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return UIElements(self._elements[index], self.selector)
        try:
            return self._elements[index]
        except IndexError:
            raise ElementIndexError(
                f"No element at index {index} for query '{self.selector}' "
                f"({len(self._elements)} found)",
                {"selector": self.selector, "index": index},
            ) from None

    def __len__(self) -> int:
        return len(self._elements)

    def __iter__(self) -> Iterator[UIElement]:
        return iter(self._elements)

    def __repr__(self) -> str:
        return f"UIElements(selector={self.selector!r}, size={len(self._elements)})"

    def size(self) -> int:
        return len(self._elements)

    def first(self) -> UIElement:
        if not self._elements:
            raise CalabashError(
                f"No elements found for query '{self.selector}'",
                ErrorCode.ELEMENT_NOT_FOUND,
                {"selector": self.selector},
            )
        return self._elements[0]

    async def touch(self) -> None:
        """Touch every element, in order."""
        self.first()
        for element in self._elements:
            await element.touch()

    async def set_text(self, value: str) -> None:
        """Set ``value`` on every element, in order."""
        self.first()
        for element in self._elements:
            await element.set_text(value)
