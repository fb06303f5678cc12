from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from rolepost.config import Settings, parse_snowflake
from rolepost.services.logger_service import LoggerService

PERSONA_DIPLOMAT = "diplomat"
PERSONA_MINISTER = "minister"
PERSONA_EXAMINER = "examiner"

DEFAULT_LABELS: dict[str, str] = {
    PERSONA_DIPLOMAT: "Diplomat (Foreign Ministry, General Affairs)",
    PERSONA_MINISTER: "Cabinet Council Member",
    PERSONA_EXAMINER: "Immigration Examiner",
}


@dataclass(frozen=True)
class PersonaStyle:
    embed_name: str = ""
    embed_icon: str = ""
    embed_color: int | None = None
    emoji: str = ""


@dataclass(frozen=True)
class PersonaGroup:
    kind: str
    label: str
    role_ids: tuple[int, ...]

    @property
    def representative_role_id(self) -> int | None:
        return self.role_ids[0] if self.role_ids else None


@dataclass(frozen=True)
class PersonaMatch:
    kind: str
    representative_role_id: int
    label: str
    style: PersonaStyle = field(default_factory=PersonaStyle)


@dataclass(frozen=True)
class PersonaCatalog:
    """Priority-ordered persona groups plus per-role presentation styles.

    Group order is the deduplication priority: earlier groups win when two
    groups share a representative role id.
    """

    groups: tuple[PersonaGroup, ...]
    styles: dict[int, PersonaStyle] = field(default_factory=dict)

    @staticmethod
    def from_settings(settings: Settings, styles: dict[int, PersonaStyle] | None = None) -> "PersonaCatalog":
        return PersonaCatalog(
            groups=(
                PersonaGroup(PERSONA_DIPLOMAT, DEFAULT_LABELS[PERSONA_DIPLOMAT], settings.diplomat_role_ids),
                PersonaGroup(PERSONA_MINISTER, DEFAULT_LABELS[PERSONA_MINISTER], settings.minister_role_ids),
                PersonaGroup(PERSONA_EXAMINER, DEFAULT_LABELS[PERSONA_EXAMINER], settings.examiner_role_ids),
            ),
            styles=dict(styles or {}),
        )

    def style_for(self, role_id: int) -> PersonaStyle | None:
        return self.styles.get(int(role_id))

    def group_for_role(self, role_id: int) -> PersonaGroup | None:
        role_id = int(role_id)
        for group in self.groups:
            if role_id in group.role_ids:
                return group
        return None

    def group(self, kind: str) -> PersonaGroup | None:
        for group in self.groups:
            if group.kind == kind:
                return group
        return None

    def sizes(self) -> dict[str, int]:
        return {group.kind: len(group.role_ids) for group in self.groups}


def resolve_personas(user_role_ids: Iterable[int], catalog: PersonaCatalog) -> list[PersonaMatch]:
    """Return the personas a member may speak as, highest priority first.

    Every group is represented by the first role id in its configured list,
    whichever of its ids the member actually holds.
    """

    held = {int(role_id) for role_id in user_role_ids}
    seen: set[int] = set()
    matches: list[PersonaMatch] = []
    for group in catalog.groups:
        representative = group.representative_role_id
        if representative is None or held.isdisjoint(group.role_ids):
            continue
        if representative in seen:
            continue
        seen.add(representative)
        matches.append(
            PersonaMatch(
                kind=group.kind,
                representative_role_id=representative,
                label=group.label,
                style=catalog.style_for(representative) or PersonaStyle(),
            )
        )
    return matches


def load_role_styles(path: Path, logger: LoggerService | None = None) -> dict[int, PersonaStyle]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        if logger is not None:
            logger.log("persona.role_config_invalid", path=str(path), error=str(exc))
        return {}
    if not isinstance(raw, dict):
        return {}
    styles: dict[int, PersonaStyle] = {}
    for key, row in raw.items():
        role_id = parse_snowflake(key)
        if role_id is None or not isinstance(row, dict):
            continue
        styles[role_id] = PersonaStyle(
            embed_name=str(row.get("embed_name") or row.get("embedName") or "").strip(),
            embed_icon=str(row.get("embed_icon") or row.get("embedIcon") or "").strip(),
            embed_color=_parse_color(row.get("embed_color", row.get("embedColor"))),
            emoji=str(row.get("emoji") or "").strip(),
        )
    return styles


def _parse_color(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if 0 <= raw <= 0xFFFFFF else None
    text = str(raw or "").strip().lower()
    if not text:
        return None
    if text.startswith("#"):
        text = text[1:]
    elif text.startswith("0x"):
        text = text[2:]
    try:
        value = int(text, 16)
    except ValueError:
        return None
    return value if 0 <= value <= 0xFFFFFF else None
