# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Arena DOM tree for structural analysis.

lxml parses the markup once; the result is flattened into a list of
``DomNode`` records addressed by index (pre-order), children stored as index
lists.  No node holds a reference to another node object, so the tree is
acyclic, cheap to copy, and serializes straight to JSON for diagnostics.

``path`` is a human-readable breadcrumb (``html > body > ul.items#news``)
used only as a selector/diagnostic string, never as a live DOM reference.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

import lxml.html
from lxml import etree

logger = logging.getLogger(__name__)

_KEEP_ATTRS = ("class", "id", "role")


@dataclass(slots=True)
class DomNode:
    index: int
    tag: str
    class_name: str
    id: str
    attributes: dict[str, str]
    depth: int
    path: str
    parent: int | None
    children: list[int] = field(default_factory=list)
    text: str = ""

    @property
    def first_class(self) -> str:
        parts = self.class_name.split()
        return parts[0] if parts else ""

    @property
    def classes(self) -> list[str]:
        return self.class_name.split()

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "tag": self.tag,
            "className": self.class_name,
            "id": self.id,
            "attributes": dict(self.attributes),
            "depth": self.depth,
            "path": self.path,
            "parent": self.parent,
            "children": list(self.children),
            "text": self.text,
        }


@dataclass(slots=True)
class DomTree:
    nodes: list[DomNode] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[DomNode]:
        return iter(self.nodes)

    def __getitem__(self, index: int) -> DomNode:
        return self.nodes[index]

    @property
    def root(self) -> DomNode | None:
        return self.nodes[0] if self.nodes else None

    def children_of(self, node: DomNode) -> list[DomNode]:
        return [self.nodes[i] for i in node.children]

    def by_tag(self, *tags: str) -> list[DomNode]:
        wanted = set(tags)
        return [n for n in self.nodes if n.tag in wanted]

    def with_class_substring(self, token: str) -> list[DomNode]:
        """Nodes whose class attribute contains *token* (substring, case-insensitive)."""
        token = token.lower()
        return [n for n in self.nodes if token in n.class_name.lower()]

    def descendants(self, node: DomNode) -> Iterator[DomNode]:
        stack = list(reversed(node.children))
        while stack:
            child = self.nodes[stack.pop()]
            yield child
            stack.extend(reversed(child.children))

    def to_dict(self) -> dict:
        return {"nodes": [n.to_dict() for n in self.nodes]}


def _segment(tag: str, class_name: str, el_id: str) -> str:
    seg = tag
    first = class_name.split()[0] if class_name.split() else ""
    if first:
        seg += f".{first}"
    if el_id:
        seg += f"#{el_id}"
    return seg


def parse_html(html: str) -> DomTree:
    """Parse *html* into an arena tree. Unparseable or empty input yields an empty tree."""
    tree = DomTree()
    if not html or not html.strip():
        return tree
    try:
        root = lxml.html.document_fromstring(html)
    except (etree.ParserError, ValueError) as exc:
        logger.warning("HTML parse failed, structural analysis disabled: %s", exc)
        return tree

    tails: list[str] = []
    own_text: list[str] = []
    # (element, parent index, depth, parent path)
    stack: list[tuple[etree._Element, int | None, int, str]] = [(root, None, 0, "")]
    while stack:
        el, parent, depth, parent_path = stack.pop()
        if not isinstance(el.tag, str):
            continue  # comments, processing instructions
        tag = el.tag.lower()
        class_name = (el.get("class") or "").strip()
        el_id = (el.get("id") or "").strip()
        attrs = {k: v for k, v in el.attrib.items() if k in _KEEP_ATTRS or k.startswith("data-")}
        seg = _segment(tag, class_name, el_id)
        path = f"{parent_path} > {seg}" if parent_path else seg
        idx = len(tree.nodes)
        tree.nodes.append(
            DomNode(
                index=idx,
                tag=tag,
                class_name=class_name,
                id=el_id,
                attributes=attrs,
                depth=depth,
                path=path,
                parent=parent,
            )
        )
        own_text.append(el.text or "")
        tails.append(el.tail or "")
        if parent is not None:
            tree.nodes[parent].children.append(idx)
        for child in reversed(list(el)):
            stack.append((child, idx, depth + 1, path))

    # Pre-order indices: every child index is greater than its parent's, so a
    # reverse sweep sees all children before the parent.
    full: list[str] = [""] * len(tree.nodes)
    for node in reversed(tree.nodes):
        parts = [own_text[node.index]]
        for c in node.children:
            parts.append(full[c])
            parts.append(tails[c])
        full[node.index] = "".join(parts)
    for node in tree.nodes:
        node.text = full[node.index].strip()
    return tree
