from __future__ import annotations

import json
from pathlib import Path

from rolepost.config import Settings
from rolepost.services.logger_service import LoggerService
from rolepost.services.persona_service import (
    PERSONA_DIPLOMAT,
    PERSONA_EXAMINER,
    PERSONA_MINISTER,
    PersonaCatalog,
    PersonaGroup,
    load_role_styles,
    resolve_personas,
)
from rolepost.storage import MessagePackStore


def _make_settings(tmp_path: Path) -> Settings:
    return Settings(
        discord_token="token",
        guild_id=123,
        command_prefix="!",
        store_path=tmp_path / "state.msgpack",
        diplomat_role_ids=(11, 12),
        minister_role_ids=(21,),
        examiner_role_ids=(31, 32),
        role_config_path=tmp_path / "role_config.json",
    )


def test_single_group_resolves_to_first_configured_role(tmp_path: Path) -> None:
    catalog = PersonaCatalog.from_settings(_make_settings(tmp_path))

    matches = resolve_personas({12, 999}, catalog)

    assert [m.kind for m in matches] == [PERSONA_DIPLOMAT]
    assert matches[0].representative_role_id == 11


def test_examiner_group_uses_first_configured_role_too(tmp_path: Path) -> None:
    catalog = PersonaCatalog.from_settings(_make_settings(tmp_path))

    matches = resolve_personas({32}, catalog)

    assert [(m.kind, m.representative_role_id) for m in matches] == [(PERSONA_EXAMINER, 31)]


def test_multiple_groups_keep_catalog_priority(tmp_path: Path) -> None:
    catalog = PersonaCatalog.from_settings(_make_settings(tmp_path))

    matches = resolve_personas([31, 21, 11, 12], catalog)

    assert [m.kind for m in matches] == [PERSONA_DIPLOMAT, PERSONA_MINISTER, PERSONA_EXAMINER]
    assert resolve_personas([31, 21, 11, 12], catalog) == matches


def test_colliding_representatives_keep_higher_priority_group() -> None:
    catalog = PersonaCatalog(
        groups=(
            PersonaGroup(PERSONA_DIPLOMAT, "Diplomat", (5, 6)),
            PersonaGroup(PERSONA_MINISTER, "Minister", (5, 7)),
        )
    )

    matches = resolve_personas({6, 7}, catalog)

    assert len(matches) == 1
    assert matches[0].kind == PERSONA_DIPLOMAT
    assert matches[0].label == "Diplomat"


def test_no_matching_roles_and_empty_groups_resolve_to_nothing() -> None:
    catalog = PersonaCatalog(groups=(PersonaGroup(PERSONA_DIPLOMAT, "Diplomat", ()),))
    assert resolve_personas({1, 2, 3}, catalog) == []
    assert resolve_personas(set(), catalog) == []


def test_group_for_role_checks_every_configured_id(tmp_path: Path) -> None:
    catalog = PersonaCatalog.from_settings(_make_settings(tmp_path))
    assert catalog.group_for_role(12).kind == PERSONA_DIPLOMAT  # type: ignore[union-attr]
    assert catalog.group_for_role(32).kind == PERSONA_EXAMINER  # type: ignore[union-attr]
    assert catalog.group_for_role(404) is None


def test_load_role_styles_skips_bad_rows_and_parses_colors(tmp_path: Path) -> None:
    path = tmp_path / "role_config.json"
    path.write_text(
        json.dumps(
            {
                "11": {"embed_name": "Foreign Ministry", "embed_icon": "https://x/icon.png", "embed_color": "#00ff00", "emoji": "🕊️"},
                "21": {"embedName": "Cabinet", "embedColor": 255},
                "31": {"embed_color": "not-a-color"},
                "oops": {"embed_name": "ignored"},
                "32": "not a dict",
            }
        ),
        encoding="utf-8",
    )

    styles = load_role_styles(path)

    assert set(styles) == {11, 21, 31}
    assert styles[11].embed_color == 0x00FF00
    assert styles[11].emoji == "🕊️"
    assert styles[21].embed_name == "Cabinet"
    assert styles[21].embed_color == 255
    assert styles[31].embed_color is None


def test_load_role_styles_logs_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "role_config.json"
    path.write_text("{broken", encoding="utf-8")
    store = MessagePackStore(tmp_path / "state.msgpack")
    logger = LoggerService(store)

    assert load_role_styles(path, logger) == {}
    assert store.data["logs"][-1]["event"] == "persona.role_config_invalid"
    assert load_role_styles(tmp_path / "missing.json", logger) == {}


def test_matches_carry_style_of_representative_role(tmp_path: Path) -> None:
    path = tmp_path / "role_config.json"
    path.write_text(json.dumps({"21": {"emoji": "🏛️"}}), encoding="utf-8")
    settings = _make_settings(tmp_path)
    catalog = PersonaCatalog.from_settings(settings, load_role_styles(settings.role_config_path))

    matches = resolve_personas({21, 11}, catalog)

    assert matches[0].style.emoji == ""
    assert matches[1].style.emoji == "🏛️"


def test_load_role_styles_skips_non_ascii_digit_keys(tmp_path: Path) -> None:
    path = tmp_path / "role_config.json"
    path.write_text(json.dumps({"²": {"emoji": "x"}, "２１": {"emoji": "y"}, "21": {"emoji": "z"}}), encoding="utf-8")

    styles = load_role_styles(path)

    assert set(styles) == {21}
    assert styles[21].emoji == "z"
