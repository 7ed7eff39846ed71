from __future__ import annotations

from pathlib import Path

import pytest

from storyweave.api import StoryApiSettings


def test_defaults_when_environment_is_empty() -> None:
    settings = StoryApiSettings.from_env({})

    assert settings.data_root is None
    assert settings.layout.horizontal_spacing == 250.0
    assert settings.layout.vertical_spacing == 150.0


def test_reads_environment_values() -> None:
    settings = StoryApiSettings.from_env(
        {
            "STORYWEAVE_DATA_ROOT": " ~/stories ",
            "STORYWEAVE_HORIZONTAL_SPACING": "120",
            "STORYWEAVE_VERTICAL_SPACING": " 80.5 ",
        }
    )

    assert settings.data_root == Path("~/stories").expanduser()
    assert settings.horizontal_spacing == 120.0
    assert settings.vertical_spacing == 80.5


def test_blank_values_fall_back_to_defaults() -> None:
    settings = StoryApiSettings.from_env(
        {"STORYWEAVE_DATA_ROOT": "   ", "STORYWEAVE_VERTICAL_SPACING": ""}
    )

    assert settings.data_root is None
    assert settings.vertical_spacing == 150.0


@pytest.mark.parametrize("value", ["zero", "0", "-3"])
def test_invalid_spacing_is_rejected(value: str) -> None:
    with pytest.raises(ValueError):
        StoryApiSettings.from_env({"STORYWEAVE_HORIZONTAL_SPACING": value})
