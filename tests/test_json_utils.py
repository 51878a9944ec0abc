"""Tests for JSON document merging and dotted-path edits."""

from __future__ import annotations

import pytest

from kestrel.utils.json_utils import deep_merge, delete_path, has_path, merge_documents, set_path


def test_deep_merge_objects_merge_and_arrays_replace():
    base = {"a": {"x": 1, "y": [1, 2]}, "b": "keep"}
    override = {"a": {"y": [3], "z": True}}

    merged = deep_merge(base, override)

    assert merged == {"a": {"x": 1, "y": [3], "z": True}, "b": "keep"}
    assert base == {"a": {"x": 1, "y": [1, 2]}, "b": "keep"}


def test_merge_documents_later_wins():
    merged = merge_documents([b'{"k": 1, "o": {"a": 1}}', b'{"k": 2, "o": {"b": 2}}'])
    assert merged == {"k": 2, "o": {"a": 1, "b": 2}}


@pytest.mark.parametrize("raw", [b"{", b"[1, 2]", b'"text"'])
def test_merge_documents_rejects_non_objects(raw):
    with pytest.raises(ValueError):
        merge_documents([b"{}", raw])


def test_set_path_creates_intermediate_objects():
    document = {"providers": {"openai": "oops"}}

    updated = set_path(document, "providers.openai.api_key", "sk")

    assert updated == {"providers": {"openai": {"api_key": "sk"}}}
    assert document == {"providers": {"openai": "oops"}}


def test_delete_path_ignores_missing_keys():
    document = {"providers": {"openai": {"api_key": "sk"}, "anthropic": {}}}

    assert delete_path(document, "providers.anthropic") == {"providers": {"openai": {"api_key": "sk"}}}
    assert delete_path(document, "missing.key") == document


def test_has_path():
    document = {"a": {"b": None}}
    assert has_path(document, "a.b")
    assert not has_path(document, "a.b.c")
    assert not has_path(document, "x")


@pytest.mark.parametrize("path", ["", ".", "a..b", "a."])
def test_invalid_paths(path):
    with pytest.raises(ValueError):
        set_path({}, path, 1)
