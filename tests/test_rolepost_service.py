from __future__ import annotations

from pathlib import Path

from rolepost.config import Settings
from rolepost.services.logger_service import LoggerService
from rolepost.services.persona_service import DEFAULT_LABELS, PERSONA_DIPLOMAT, PERSONA_MINISTER, PersonaCatalog
from rolepost.services.rolepost_service import (
    OUTCOME_ACTIVATED,
    OUTCOME_AWAITING_CHOICE,
    OUTCOME_DEACTIVATED,
    OUTCOME_FAILED,
    OUTCOME_NOT_ELIGIBLE,
    OUTCOME_REJECTED,
    REJECT_INVALID_TOKEN,
    REJECT_UNAUTHORIZED,
    REJECT_UNKNOWN_PERSONA,
    RolepostService,
    decode_choice_token,
    encode_choice_token,
)
from rolepost.services.session_store import SessionStore
from rolepost.storage import MessagePackStore

CHANNEL = 5000
USER = 7000
OTHER_USER = 7001


def _make_settings(tmp_path: Path) -> Settings:
    return Settings(
        discord_token="token",
        guild_id=123,
        command_prefix="!",
        store_path=tmp_path / "state.msgpack",
        diplomat_role_ids=(11, 12),
        minister_role_ids=(21,),
        examiner_role_ids=(31,),
        role_config_path=tmp_path / "role_config.json",
    )


def _make_service(tmp_path: Path) -> RolepostService:
    settings = _make_settings(tmp_path)
    store = MessagePackStore(settings.store_path)
    logger = LoggerService(store)
    return RolepostService(SessionStore(), PersonaCatalog.from_settings(settings), logger)


def test_single_persona_activates_directly(tmp_path: Path) -> None:
    service = _make_service(tmp_path)

    outcome = service.handle_toggle_command(CHANNEL, USER, [11])

    assert outcome.kind == OUTCOME_ACTIVATED
    assert outcome.label == DEFAULT_LABELS[PERSONA_DIPLOMAT]
    assert service.sessions.get_active_role(CHANNEL, USER) == 11


def test_multiple_personas_prompt_without_writing_session(tmp_path: Path) -> None:
    service = _make_service(tmp_path)

    outcome = service.handle_toggle_command(CHANNEL, USER, [11, 21])

    assert outcome.kind == OUTCOME_AWAITING_CHOICE
    assert [p.representative_role_id for p in outcome.personas] == [11, 21]
    assert decode_choice_token(outcome.token) == (CHANNEL, USER)
    assert service.sessions.is_active(CHANNEL, USER) is False

    chosen = service.handle_choice(outcome.token, USER, "21")

    assert chosen.kind == OUTCOME_ACTIVATED
    assert chosen.label == DEFAULT_LABELS[PERSONA_MINISTER]
    assert service.sessions.get_active_role(CHANNEL, USER) == 21


def test_no_persona_roles_is_not_eligible(tmp_path: Path) -> None:
    service = _make_service(tmp_path)

    outcome = service.handle_toggle_command(CHANNEL, USER, [999])

    assert outcome.kind == OUTCOME_NOT_ELIGIBLE
    assert len(service.sessions) == 0


def test_toggle_on_active_session_deactivates(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    service.sessions.activate(CHANNEL, USER, 11)

    outcome = service.handle_toggle_command(CHANNEL, USER, [11])

    assert outcome.kind == OUTCOME_DEACTIVATED
    assert outcome.role_id == 11
    assert service.sessions.is_active(CHANNEL, USER) is False


def test_deactivation_ignores_missing_role_snapshot(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    service.sessions.activate(CHANNEL, USER, 11)

    outcome = service.handle_toggle_command(CHANNEL, USER, None)

    assert outcome.kind == OUTCOME_DEACTIVATED
    assert service.sessions.is_active(CHANNEL, USER) is False


def test_unavailable_roles_fail_closed(tmp_path: Path) -> None:
    service = _make_service(tmp_path)

    assert service.handle_toggle_command(CHANNEL, USER, None).kind == OUTCOME_FAILED
    assert service.handle_toggle_command(CHANNEL, USER, ["not-a-role"]).kind == OUTCOME_FAILED  # type: ignore[list-item]
    assert len(service.sessions) == 0


def test_choice_from_another_user_is_rejected(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    token = service.handle_toggle_command(CHANNEL, USER, [11, 21]).token

    outcome = service.handle_choice(token, OTHER_USER, "11")

    assert outcome.kind == OUTCOME_REJECTED
    assert outcome.reason == REJECT_UNAUTHORIZED
    assert service.sessions.is_active(CHANNEL, USER) is False
    assert service.sessions.is_active(CHANNEL, OTHER_USER) is False


def test_choice_with_unknown_role_is_rejected(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    token = encode_choice_token(CHANNEL, USER)

    for value in ("404", "", "abc"):
        outcome = service.handle_choice(token, USER, value)
        assert outcome.kind == OUTCOME_REJECTED
        assert outcome.reason == REJECT_UNKNOWN_PERSONA
    assert service.sessions.is_active(CHANNEL, USER) is False


def test_choice_label_follows_configured_membership(tmp_path: Path) -> None:
    service = _make_service(tmp_path)

    outcome = service.handle_choice(encode_choice_token(CHANNEL, USER), USER, 12)

    assert outcome.label == DEFAULT_LABELS[PERSONA_DIPLOMAT]
    assert service.sessions.get_active_role(CHANNEL, USER) == 12


def test_malformed_token_is_rejected(tmp_path: Path) -> None:
    service = _make_service(tmp_path)

    for token in ("", "rolepost:choose:abc:1", "rolepost-choose-1-2", "rolepost:choose:1:2:3"):
        outcome = service.handle_choice(token, USER, "11")
        assert outcome.kind == OUTCOME_REJECTED
        assert outcome.reason == REJECT_INVALID_TOKEN
    assert len(service.sessions) == 0


def test_toggle_events_are_logged(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    service.handle_toggle_command(CHANNEL, USER, [21])
    service.handle_toggle_command(CHANNEL, USER, [21])

    events = [row["event"] for row in service.logger.recent(2)]
    assert events == ["rolepost.activated", "rolepost.deactivated"]


def test_choice_with_non_ascii_digits_is_unknown_persona(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    token = encode_choice_token(CHANNEL, USER)

    for value in ("²", "２１", "١١"):
        outcome = service.handle_choice(token, USER, value)
        assert outcome.kind == OUTCOME_REJECTED
        assert outcome.reason == REJECT_UNKNOWN_PERSONA
    assert len(service.sessions) == 0


def test_recent_filters_by_event_suffix(tmp_path: Path) -> None:
    service = _make_service(tmp_path)
    service.logger.log("rolepost.command_failed", error="x")
    service.handle_toggle_command(CHANNEL, USER, [21])

    assert [row["event"] for row in service.logger.recent(5, suffix="_failed")] == ["rolepost.command_failed"]
    assert service.logger.recent(0) == []
