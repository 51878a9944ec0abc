"""Tests for the environment abstraction."""

from __future__ import annotations

import os

import pytest

from kestrel.utils.env import Env, parse_bool, push_pop_app_env


def test_fixed_env_treats_missing_as_empty():
    env = Env.from_map({"A": "1"})
    assert env.get("A") == "1"
    assert env.get("B") == ""
    assert env.lookup("B") == ("", False)
    assert env.lookup("A") == ("1", True)
    assert "A=1" in env.environ()


def test_live_env_tracks_process_environment(monkeypatch):
    env = Env.from_os()
    monkeypatch.setenv("KESTREL_TEST_VALUE", "x")
    assert env.get("KESTREL_TEST_VALUE") == "x"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", True), ("true", True), ("TRUE", True), ("0", False), ("false", False), ("maybe", None), ("", None)],
)
def test_parse_bool(raw, expected):
    assert parse_bool(raw) is expected


def test_prefixed_overlay_on_fixed_env():
    env = Env.from_map({"KESTREL_TOKEN": "inner", "TOKEN": "outer", "KESTREL_NEW": "n"})

    with push_pop_app_env(env):
        assert env.get("TOKEN") == "inner"
        assert env.get("NEW") == "n"

    assert env.get("TOKEN") == "outer"
    assert env.lookup("NEW") == ("", False)


def test_prefixed_overlay_on_process_env(monkeypatch):
    monkeypatch.setenv("KESTREL_OVERLAY_CHECK", "inner")
    monkeypatch.delenv("OVERLAY_CHECK", raising=False)

    with push_pop_app_env():
        assert os.environ["OVERLAY_CHECK"] == "inner"

    assert "OVERLAY_CHECK" not in os.environ
