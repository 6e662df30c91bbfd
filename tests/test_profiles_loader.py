from pathlib import Path
import textwrap

import pytest

from squabble_mcp.profiles import DEFAULT_PROFILE, ProfileLoadError, ProfileLoader


def write_profile(path: Path, *, profile_id: str = "strict", title: str) -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: {profile_id}
            title: {title}
            system_prompt: Prompt
            review_guidelines:
              - Run the full test suite
              - Reject untested code
            metadata:
              team: platform
            """
        ).strip().format(profile_id=profile_id, title=title),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_profile(base / "strict.yaml", title="Base Title")
    write_profile(override / "strict.yml", title="Override Title")

    loader = ProfileLoader([base, override])
    profiles = loader.load_all()

    assert profiles["strict"].title == "Override Title"
    assert profiles["strict"].review_guidelines == ["Run the full test suite", "Reject untested code"]
    assert profiles["strict"].metadata == {"team": "platform"}


def test_loader_falls_back_to_default_profile(tmp_path: Path) -> None:
    loader = ProfileLoader([tmp_path, tmp_path / "missing"])

    assert loader.search_paths == [tmp_path]
    assert loader.load_all() == {"reviewer": DEFAULT_PROFILE}
    assert loader.get() is DEFAULT_PROFILE


def test_loader_overrides_default_profile(tmp_path: Path) -> None:
    write_profile(tmp_path / "reviewer.yaml", profile_id="reviewer", title="House reviewer")

    assert ProfileLoader([tmp_path]).get().title == "House reviewer"


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    invalid = tmp_path / "invalid"
    invalid.mkdir()
    (invalid / "broken.yaml").write_text("id: \nsystem_prompt: test", encoding="utf-8")

    loader = ProfileLoader([invalid])

    with pytest.raises(ProfileLoadError):
        loader.load_all()


def test_loader_reports_unknown_profile(tmp_path: Path) -> None:
    with pytest.raises(ProfileLoadError):
        ProfileLoader([tmp_path]).get("missing")
