from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from rolepost.config import parse_snowflake
from rolepost.services.logger_service import LoggerService
from rolepost.services.persona_service import PersonaCatalog, PersonaMatch, resolve_personas
from rolepost.services.session_store import SessionStore

OUTCOME_DEACTIVATED = "deactivated"
OUTCOME_NOT_ELIGIBLE = "not_eligible"
OUTCOME_ACTIVATED = "activated"
OUTCOME_AWAITING_CHOICE = "awaiting_choice"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"

REJECT_UNAUTHORIZED = "unauthorized"
REJECT_UNKNOWN_PERSONA = "unknown_persona"
REJECT_INVALID_TOKEN = "invalid_token"

CHOICE_TOKEN_PREFIX = "rolepost:choose"
CHOICE_TOKEN_PATTERN = r"rolepost:choose:(?P<channel_id>[0-9]+):(?P<user_id>[0-9]+)"
_CHOICE_TOKEN_RE = re.compile(rf"^{CHOICE_TOKEN_PATTERN}$")


@dataclass(frozen=True)
class RolepostOutcome:
    kind: str
    label: str = ""
    role_id: int | None = None
    personas: tuple[PersonaMatch, ...] = field(default_factory=tuple)
    token: str = ""
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.kind not in {OUTCOME_REJECTED, OUTCOME_FAILED}


def encode_choice_token(channel_id: int, user_id: int) -> str:
    return f"{CHOICE_TOKEN_PREFIX}:{int(channel_id)}:{int(user_id)}"


def decode_choice_token(token: str) -> tuple[int, int] | None:
    match = _CHOICE_TOKEN_RE.match(str(token or "").strip())
    if match is None:
        return None
    return int(match.group("channel_id")), int(match.group("user_id"))


class RolepostService:
    """Speaking-mode toggle and persona choice handling.

    States per (channel, user): inactive, active, and an implicit
    awaiting-choice state that exists only inside the select widget sent to
    the user. The choice token in that widget carries everything needed to
    finish activation, so no pending table is kept here and nothing expires.
    """

    def __init__(self, sessions: SessionStore, catalog: PersonaCatalog, logger: LoggerService) -> None:
        self.sessions = sessions
        self.catalog = catalog
        self.logger = logger

    def handle_toggle_command(
        self,
        channel_id: int,
        user_id: int,
        user_role_ids: Iterable[int] | None,
    ) -> RolepostOutcome:
        if self.sessions.is_active(channel_id, user_id):
            role_id = self.sessions.get_active_role(channel_id, user_id)
            self.sessions.deactivate(channel_id, user_id)
            self.logger.log("rolepost.deactivated", channel_id=channel_id, user_id=user_id, role_id=role_id)
            return RolepostOutcome(kind=OUTCOME_DEACTIVATED, role_id=role_id)

        role_ids = self._snapshot_roles(user_role_ids)
        if role_ids is None:
            self.logger.log("rolepost.roles_unavailable", channel_id=channel_id, user_id=user_id)
            return RolepostOutcome(kind=OUTCOME_FAILED, reason="roles_unavailable")

        matches = resolve_personas(role_ids, self.catalog)
        if not matches:
            self.logger.log("rolepost.not_eligible", channel_id=channel_id, user_id=user_id)
            return RolepostOutcome(kind=OUTCOME_NOT_ELIGIBLE)

        if len(matches) > 1:
            self.logger.log(
                "rolepost.choice_prompted",
                channel_id=channel_id,
                user_id=user_id,
                role_ids=[match.representative_role_id for match in matches],
            )
            return RolepostOutcome(
                kind=OUTCOME_AWAITING_CHOICE,
                personas=tuple(matches),
                token=encode_choice_token(channel_id, user_id),
            )

        match = matches[0]
        self.sessions.activate(channel_id, user_id, match.representative_role_id)
        self.logger.log(
            "rolepost.activated",
            channel_id=channel_id,
            user_id=user_id,
            role_id=match.representative_role_id,
            via="direct",
        )
        return RolepostOutcome(kind=OUTCOME_ACTIVATED, label=match.label, role_id=match.representative_role_id)

    def handle_choice(self, token: str, responding_user_id: int, chosen_role_id: int | str) -> RolepostOutcome:
        decoded = decode_choice_token(token)
        if decoded is None:
            self.logger.log("rolepost.choice_rejected", reason=REJECT_INVALID_TOKEN, token=str(token)[:100])
            return RolepostOutcome(kind=OUTCOME_REJECTED, reason=REJECT_INVALID_TOKEN)
        channel_id, user_id = decoded

        if int(responding_user_id) != user_id:
            self.logger.log(
                "rolepost.choice_rejected",
                reason=REJECT_UNAUTHORIZED,
                channel_id=channel_id,
                user_id=user_id,
                responder_id=responding_user_id,
            )
            return RolepostOutcome(kind=OUTCOME_REJECTED, reason=REJECT_UNAUTHORIZED)

        role_id = _to_role_id(chosen_role_id)
        group = self.catalog.group_for_role(role_id) if role_id is not None else None
        if role_id is None or group is None:
            self.logger.log(
                "rolepost.choice_rejected",
                reason=REJECT_UNKNOWN_PERSONA,
                channel_id=channel_id,
                user_id=user_id,
                chosen=str(chosen_role_id)[:40],
            )
            return RolepostOutcome(kind=OUTCOME_REJECTED, reason=REJECT_UNKNOWN_PERSONA)

        self.sessions.activate(channel_id, user_id, role_id)
        self.logger.log("rolepost.activated", channel_id=channel_id, user_id=user_id, role_id=role_id, via="choice")
        return RolepostOutcome(kind=OUTCOME_ACTIVATED, label=group.label, role_id=role_id)

    def _snapshot_roles(self, user_role_ids: Iterable[int] | None) -> set[int] | None:
        if user_role_ids is None:
            return None
        try:
            return {int(role_id) for role_id in user_role_ids}
        except (TypeError, ValueError):
            return None


def _to_role_id(raw: int | str) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None
    return parse_snowflake(raw)
