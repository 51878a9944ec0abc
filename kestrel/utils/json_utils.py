"""JSON helper utilities for Kestrel.

Implements the two document operations the layered configuration relies
on: a recursive merge of several JSON documents and sparse dotted-path
edits of a single document.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Dict, Iterable, List


def deep_merge(base: Any, override: Any) -> Any:
    """Merge ``override`` into ``base``.

    Objects merge key by key; arrays and scalars from ``override`` replace
    whatever ``base`` held. Neither input is mutated.
    """
    if isinstance(base, dict) and isinstance(override, dict):
        merged = dict(base)
        for key, value in override.items():
            if key in merged:
                merged[key] = deep_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


def merge_documents(documents: Iterable[bytes]) -> Dict[str, Any]:
    """Parse and merge raw JSON documents, later documents taking priority."""
    merged: Dict[str, Any] = {}
    for index, raw in enumerate(documents):
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValueError(f"invalid JSON in config document #{index}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"config document #{index} must be a JSON object")
        merged = deep_merge(merged, payload)
    return merged


def _split_path(path: str) -> List[str]:
    parts = [part for part in path.split(".")]
    if not path or any(not part for part in parts):
        raise ValueError(f"invalid path: {path!r}")
    return parts


def has_path(document: Any, path: str) -> bool:
    node = document
    for part in _split_path(path):
        if not isinstance(node, dict) or part not in node:
            return False
        node = node[part]
    return True


def set_path(document: Dict[str, Any], path: str, value: Any) -> Dict[str, Any]:
    """Return a copy of ``document`` with ``value`` stored at dotted ``path``.

    Intermediate objects are created as needed; a non-object found on the
    way is replaced by an object.
    """
    parts = _split_path(path)
    updated = copy.deepcopy(document)
    node = updated
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = copy.deepcopy(value)
    return updated


def delete_path(document: Dict[str, Any], path: str) -> Dict[str, Any]:
    """Return a copy of ``document`` without the key at dotted ``path``."""
    parts = _split_path(path)
    updated = copy.deepcopy(document)
    node: Any = updated
    for part in parts[:-1]:
        if not isinstance(node, dict) or part not in node:
            return updated
        node = node[part]
    if isinstance(node, dict):
        node.pop(parts[-1], None)
    return updated
