from __future__ import annotations

import asyncio
import random
from datetime import datetime, timezone
from typing import Any, Iterable

import aiohttp
import discord

from rolepost.config import Settings
from rolepost.services.logger_service import LoggerService
from rolepost.services.persona_service import PERSONA_DIPLOMAT, PersonaCatalog
from rolepost.storage import MessagePackStore

GROUP_DIPLOMAT = "diplomat"
GROUP_CITIZEN = "citizen"


class MemberSyncService:
    """Mirrors guild role membership to the citizen directory API."""

    FETCH_LIMIT = 1000
    JITTER_MS = 250

    def __init__(
        self,
        settings: Settings,
        store: MessagePackStore,
        logger: LoggerService,
        catalog: PersonaCatalog,
    ) -> None:
        self.settings = settings
        self.store = store
        self.logger = logger
        self.catalog = catalog

    def root(self) -> dict[str, Any]:
        node = self.store.section("member_sync")
        if not isinstance(node.get("last_run"), dict):
            node["last_run"] = {}
        if not isinstance(node.get("members"), dict):
            node["members"] = {}
        return node

    def enabled(self) -> bool:
        return bool(self.settings.citizen_api_url and self.settings.guild_id > 0)

    def last_run(self) -> dict[str, Any]:
        return dict(self.root()["last_run"])

    def tracked_count(self) -> int:
        return len(self.root()["members"])

    def is_current(self, payload: dict[str, Any]) -> bool:
        """True when the directory already holds exactly this group and role set."""
        record = self.root()["members"].get(payload["discord_id"])
        if not isinstance(record, dict) or int(record.get("status", 0) or 0) >= 400:
            return False
        return record.get("group") == payload["group"] and sorted(record.get("roles") or []) == sorted(payload["roles"])

    def infer_group(self, role_ids: Iterable[int]) -> str:
        group = self.catalog.group(PERSONA_DIPLOMAT)
        if group is None:
            return GROUP_CITIZEN
        held = {int(role_id) for role_id in role_ids}
        return GROUP_DIPLOMAT if not held.isdisjoint(group.role_ids) else GROUP_CITIZEN

    def build_payload(self, member: discord.Member) -> dict[str, Any]:
        roles = [str(role.id) for role in member.roles]
        return {
            "guild_id": str(self.settings.guild_id),
            "discord_id": str(member.id),
            "group": self.infer_group(int(role_id) for role_id in roles),
            "roles": roles,
        }

    async def sync_member(self, member: discord.Member) -> int:
        return await self._push(self.build_payload(member))

    async def full_sync(self, guild: discord.Guild) -> dict[str, Any]:
        ok = 0
        failed = 0
        skipped = 0
        async for member in guild.fetch_members(limit=self.FETCH_LIMIT):
            payload = self.build_payload(member)
            if self.is_current(payload):
                skipped += 1
                continue
            try:
                await self._push(payload)
                ok += 1
            except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError) as exc:
                failed += 1
                self.logger.log("member_sync.failed", user_id=member.id, error=str(exc)[:300])
            jitter = random.randint(0, self.JITTER_MS) if self.JITTER_MS > 0 else 0
            delay_ms = self.settings.member_sync_throttle_ms + jitter
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)
        summary = {"ok": ok, "failed": failed, "skipped": skipped, "ts": datetime.now(tz=timezone.utc).isoformat()}
        self.root()["last_run"] = summary
        self.store.touch()
        self.logger.log("member_sync.completed", guild_id=guild.id, ok=ok, failed=failed, skipped=skipped)
        return summary

    async def run_loop(self, bot: discord.Client) -> None:
        interval = max(60, self.settings.member_sync_interval_sec)
        while True:
            guild = bot.get_guild(self.settings.guild_id)
            if guild is None:
                self.logger.log("member_sync.guild_missing", guild_id=self.settings.guild_id)
            else:
                try:
                    await self.full_sync(guild)
                except discord.HTTPException as exc:
                    self.logger.log("member_sync.fetch_failed", guild_id=guild.id, error=str(exc)[:300])
                except Exception as exc:  # noqa: BLE001
                    self.logger.log("member_sync.loop_failed", guild_id=guild.id, error=repr(exc)[:300])
            await asyncio.sleep(interval)

    async def _push(self, payload: dict[str, Any]) -> int:
        status = await self._post(payload)
        self.root()["members"][payload["discord_id"]] = {
            "group": payload["group"],
            "roles": list(payload["roles"]),
            "status": status,
            "ts": datetime.now(tz=timezone.utc).isoformat(),
        }
        self.store.touch()
        self.logger.log("member_sync.member", user_id=payload["discord_id"], status=status)
        return status

    async def _post(self, payload: dict[str, Any]) -> int:
        headers = {"Content-Type": "application/json"}
        if self.settings.citizen_api_token:
            headers["Authorization"] = f"Bearer {self.settings.citizen_api_token}"
        timeout = aiohttp.ClientTimeout(total=15)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.settings.citizen_api_url, headers=headers, json=payload) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise RuntimeError(f"HTTP {response.status}: {body[:300]}")
                return response.status
