from __future__ import annotations

import allure
import pytest

from backup_supervisor.masking import MASK, mask_sensitive_info

pytestmark = [
    allure.epic("Operation Supervision"),
    allure.feature("Sensitive Data Masking"),
]


def test_masks_sensitive_fields_recursively() -> None:
    target = {"password": "x", "nested": {"url": "y", "keep": "z"}}

    masked = mask_sensitive_info(target)

    assert masked == {"password": MASK, "nested": {"url": MASK, "keep": "z"}}
    assert target == {"password": "x", "nested": {"url": "y", "keep": "z"}}


def test_masks_inside_sequences() -> None:
    target = {"credentials": [{"uri": "mongodb://u:p@h"}, {"pwd": "p", "user": "u"}]}

    assert mask_sensitive_info(target) == {
        "credentials": [{"uri": MASK}, {"pwd": MASK, "user": "u"}],
    }


def test_only_string_values_are_masked() -> None:
    target = {"password": None, "url": {"host": "h"}, "psswd": 42}

    assert mask_sensitive_info(target) == target


def test_key_matching_is_case_sensitive() -> None:
    assert mask_sensitive_info({"Password": "x", "PASSWD": "y"}) == {
        "Password": "x",
        "PASSWD": "y",
    }


def test_negative_level_is_rejected() -> None:
    with pytest.raises(ValueError):
        mask_sensitive_info({"password": "x"}, -1)


def test_levels_beyond_limit_are_returned_unchanged() -> None:
    target = {"password": "x"}

    assert mask_sensitive_info(target, 5) is target
    assert mask_sensitive_info(target, 4) == {"password": MASK}


def test_deeply_nested_subtrees_are_left_alone() -> None:
    deep = {"password": "deep"}
    target = {"a": {"b": {"c": {"d": {"e": deep}}}}}

    masked = mask_sensitive_info(target)

    assert masked["a"]["b"]["c"]["d"]["e"] == {"password": "deep"}


def test_scalars_pass_through() -> None:
    assert mask_sensitive_info("password") == "password"
    assert mask_sensitive_info(("a", {"passwd": "b"})) == ("a", {"passwd": MASK})
