"""
Element model and selector derivation shared by the tracker and the server.

The same ``derive_selector`` must be used when a click is classified live and
when clicks are rolled up by selector later, otherwise the two disagree.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Tuple

INTERACTIVE_TAGS = frozenset(
    {"a", "button", "input", "select", "textarea", "label", "summary", "option", "details"}
)
INTERACTIVE_ROLES = frozenset({"button", "link", "menuitem", "checkbox", "tab", "switch", "option"})

SELECTOR_MAX_LENGTH = 200


@dataclass(frozen=True)
class Element:
    """Minimal view of a DOM node as seen by the click handler."""

    tag: str
    id: Optional[str] = None
    classes: Tuple[str, ...] = ()
    attributes: Dict[str, str] = field(default_factory=dict)
    has_click_listener: bool = False
    text: str = ""
    parent: Optional["Element"] = None

    @property
    def tag_name(self) -> str:
        return self.tag.lower()

    def ancestors_and_self(self) -> Iterator["Element"]:
        """Walk up to, but not past, ``body``."""
        node: Optional[Element] = self
        while node is not None:
            yield node
            if node.tag_name in ("body", "html"):
                return
            node = node.parent


def derive_selector(element: Element) -> str:
    """
    Build the grouping selector for an element.

    ``tag#id`` when the element has an id, otherwise ``tag.cls1.cls2`` with
    at most two class tokens, otherwise just the tag.
    """
    selector = element.tag_name
    if element.id:
        selector += f"#{element.id}"
    elif element.classes:
        tokens = [c for c in element.classes if c.strip()][:2]
        if tokens:
            selector += "." + ".".join(tokens)
    return selector[:SELECTOR_MAX_LENGTH]


def _is_interactive_node(node: Element) -> bool:
    if node.tag_name in INTERACTIVE_TAGS:
        return True
    attrs = node.attributes
    if attrs.get("role", "").lower() in INTERACTIVE_ROLES:
        return True
    if "tabindex" in attrs or "onclick" in attrs:
        return True
    if attrs.get("contenteditable") in ("", "true"):
        return True
    return node.has_click_listener


def is_interactive(element: Element) -> bool:
    """True when the element or any ancestor up to ``body`` handles clicks."""
    return any(_is_interactive_node(node) for node in element.ancestors_and_self())


def resolve_link_target(element: Element) -> Optional[str]:
    """href of the closest enclosing anchor, if any."""
    for node in element.ancestors_and_self():
        if node.tag_name == "a":
            href = node.attributes.get("href")
            if href:
                return href
    return None
