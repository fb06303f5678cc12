from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


@dataclass(frozen=True)
class Settings:
    discord_token: str
    guild_id: int
    command_prefix: str
    store_path: Path
    diplomat_role_ids: tuple[int, ...]
    minister_role_ids: tuple[int, ...]
    examiner_role_ids: tuple[int, ...]
    role_config_path: Path
    log_webhook_url: str = ""
    citizen_api_url: str = ""
    citizen_api_token: str = ""
    member_sync_interval_sec: int = 0
    member_sync_throttle_ms: int = 1000
    sync_commands_on_start: bool = False

    @staticmethod
    def load(path: Path = Path("passwords.txt"), environ: Mapping[str, str] | None = None) -> "Settings":
        values = _parse_passwords_file(path)
        values.update({key: value for key, value in (os.environ if environ is None else environ).items()})
        token = values.get("DISCORD_TOKEN", "").strip()
        if not token:
            raise RuntimeError("DISCORD_TOKEN is required (environment or passwords.txt).")
        return Settings(
            discord_token=token,
            guild_id=_to_int(values.get("GUILD_ID"), 0),
            command_prefix=values.get("COMMAND_PREFIX", "!").strip() or "!",
            store_path=Path(values.get("STORE_PATH", "data/rolepost.msgpack")),
            diplomat_role_ids=parse_role_ids(values.get("ROLLID_DIPLOMAT", "")),
            minister_role_ids=parse_role_ids(values.get("ROLLID_MINISTER", "")),
            examiner_role_ids=parse_role_ids(values.get("EXAMINER_ROLE_IDS", "")),
            role_config_path=Path(values.get("ROLE_CONFIG_PATH", "role_config.json")),
            log_webhook_url=values.get("DISCORD_WEBHOOK_URL", "").strip(),
            citizen_api_url=values.get("CITIZEN_API_URL", "").strip(),
            citizen_api_token=values.get("CITIZEN_API_TOKEN", "").strip(),
            member_sync_interval_sec=max(0, _to_int(values.get("MEMBER_SYNC_INTERVAL_SEC"), 0)),
            member_sync_throttle_ms=max(0, _to_int(values.get("MEMBER_SYNC_THROTTLE_MS"), 1000)),
            sync_commands_on_start=values.get("SYNC_COMMANDS_ON_START", "").strip().lower() in {"1", "true", "yes", "on"},
        )


def parse_role_ids(raw: str | None) -> tuple[int, ...]:
    """Split a comma-separated role id list, dropping blank and non-numeric entries."""
    out: list[int] = []
    for part in str(raw or "").split(","):
        role_id = parse_snowflake(part)
        if role_id is not None and role_id not in out:
            out.append(role_id)
    return tuple(out)


def parse_snowflake(raw: object) -> int | None:
    # isdigit() alone lets through digits such as "²" that int() rejects.
    token = str(raw or "").strip()
    if not token.isascii() or not token.isdigit():
        return None
    value = int(token)
    return value if value > 0 else None


def _to_int(raw: str | None, default: int) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


def _parse_passwords_file(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not path.exists():
        return values
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values
