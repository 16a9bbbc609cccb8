"""Query classification: node id or free text.

A query that looks like a node identifier (letters, digits, ``-`` and
``_``, at least six characters, no whitespace) is tried as a direct lookup
first; everything else goes to search.
"""

from __future__ import annotations

import re
from typing import Literal, Union

from pydantic import BaseModel

NODE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{6,}$")


class NodeIdQuery(BaseModel):
    kind: Literal["id"] = "id"
    value: str


class TextQuery(BaseModel):
    kind: Literal["query"] = "query"
    value: str


QueryRef = Union[NodeIdQuery, TextQuery]


def looks_like_node_id(value: str) -> bool:
    return bool(NODE_ID_PATTERN.fullmatch(value))


def classify_query(query: str) -> QueryRef:
    """Classify raw query text as a node id or a search query."""
    text = query.strip()
    if looks_like_node_id(text):
        return NodeIdQuery(value=text)
    return TextQuery(value=text)
