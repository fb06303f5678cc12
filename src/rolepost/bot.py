from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import discord
from discord import app_commands
from discord.ext import commands

from rolepost.config import Settings
from rolepost.services.log_relay_service import LogRelayService
from rolepost.services.logger_service import LoggerService
from rolepost.services.member_sync_service import MemberSyncService
from rolepost.services.persona_service import PersonaCatalog, load_role_styles
from rolepost.services.rolepost_service import OUTCOME_AWAITING_CHOICE, RolepostOutcome, RolepostService
from rolepost.services.session_store import SessionStore
from rolepost.storage import MessagePackStore
from rolepost.ui.rolepost_choice import GENERIC_FAILURE_TEXT, RolepostChoiceSelect, build_choice_view, outcome_message
from rolepost.utils.embeds import first_image_url, make_persona_embed


@app_commands.command(name="rolepost", description="Toggle role speaking mode on/off")
@app_commands.guild_only()
async def rolepost_command(interaction: discord.Interaction) -> None:
    handler = getattr(interaction.client, "handle_rolepost_command", None)
    if handler is None:
        await interaction.response.send_message("Speaking mode handler unavailable.", ephemeral=True)
        return
    await handler(interaction)


class RolepostBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True
        super().__init__(command_prefix=settings.command_prefix, intents=intents, help_command=None)
        self.settings = settings
        self.store = MessagePackStore(settings.store_path)
        self.logger = LoggerService(self.store)
        self.catalog = PersonaCatalog.from_settings(settings, load_role_styles(settings.role_config_path, self.logger))
        self.sessions = SessionStore()
        self.rolepost = RolepostService(self.sessions, self.catalog, self.logger)
        self.member_sync = MemberSyncService(settings, self.store, self.logger, self.catalog)
        self.log_relay = LogRelayService(settings.log_webhook_url, self.logger)
        self.started_at = datetime.now(tz=timezone.utc)
        self._autosave_task: asyncio.Task | None = None
        self._log_relay_task: asyncio.Task | None = None
        self._member_sync_task: asyncio.Task | None = None
        self._ready_once = False

    async def setup_hook(self) -> None:
        await self.store.load()
        self._autosave_task = asyncio.create_task(self.store.autosave_loop(), name="msgpack-autosave")
        if self.log_relay.enabled():
            self._log_relay_task = asyncio.create_task(self.log_relay.run_loop(), name="log-webhook-relay")
        self.tree.add_command(rolepost_command)
        self.add_dynamic_items(RolepostChoiceSelect)
        self._register_commands()
        if self.settings.sync_commands_on_start:
            synced = await self.tree.sync()
            self.logger.log("commands.synced", count=len(synced))

    def _register_commands(self) -> None:
        @self.command(name="health")
        @commands.has_guild_permissions(manage_guild=True)
        async def health(ctx: commands.Context) -> None:
            await ctx.send(self.health_report())

    def health_report(self) -> str:
        uptime = datetime.now(tz=timezone.utc) - self.started_at
        sizes = ", ".join(f"{kind}={count}" for kind, count in self.catalog.sizes().items())
        last_sync = self.member_sync.last_run()
        sync_text = (
            f"{last_sync.get('ok', 0)} ok / {last_sync.get('failed', 0)} failed / "
            f"{last_sync.get('skipped', 0)} unchanged at {last_sync.get('ts')}"
            if last_sync
            else "never"
        )
        failures = self.logger.recent(3, suffix="_failed")
        failure_text = ", ".join(f"{row['event']}@{str(row['ts'])[:19]}" for row in failures) or "none"
        return (
            f"Uptime: `{uptime}`\n"
            f"Active speaking sessions: `{len(self.sessions)}`\n"
            f"Persona roles: `{sizes}`\n"
            f"Member sync: `{sync_text}` (tracked members: `{self.member_sync.tracked_count()}`)\n"
            f"Log relay: `{'on' if self.log_relay.enabled() else 'off'}` (dropped: `{self.log_relay.dropped}`)\n"
            f"Recent failures: `{failure_text}`"
        )

    async def on_ready(self) -> None:
        if self._ready_once:
            return
        self._ready_once = True
        if self.member_sync.enabled() and self.settings.member_sync_interval_sec > 0:
            if self._member_sync_task is None or self._member_sync_task.done():
                self._member_sync_task = asyncio.create_task(self.member_sync.run_loop(self), name="member-sync-loop")
        self.logger.log("bot.ready", bot_id=self.user.id if self.user else 0, guilds=len(self.guilds))

    async def handle_rolepost_command(self, interaction: discord.Interaction) -> None:
        try:
            await interaction.response.defer(ephemeral=True, thinking=True)
            channel_id = int(interaction.channel_id or 0)
            user_id = interaction.user.id
            outcome = self.rolepost.handle_toggle_command(channel_id, user_id, _member_role_ids(interaction.user))
            await self._edit_with_outcome(interaction, channel_id, user_id, outcome)
        except Exception as exc:  # noqa: BLE001
            self.logger.log("rolepost.command_failed", user_id=interaction.user.id, error=str(exc)[:300])
            await _send_failure(interaction)

    async def _edit_with_outcome(
        self,
        interaction: discord.Interaction,
        channel_id: int,
        user_id: int,
        outcome: RolepostOutcome,
    ) -> None:
        content = outcome_message(outcome)
        if outcome.kind == OUTCOME_AWAITING_CHOICE:
            view = build_choice_view(channel_id, user_id, outcome)
            await interaction.edit_original_response(content=content, view=view)
            return
        await interaction.edit_original_response(content=content)

    async def handle_rolepost_choice(self, interaction: discord.Interaction, *, token: str, raw_value: str) -> None:
        try:
            outcome = self.rolepost.handle_choice(token, interaction.user.id, raw_value)
        except Exception as exc:  # noqa: BLE001
            self.logger.log("rolepost.choice_failed", user_id=interaction.user.id, error=str(exc)[:300])
            await _send_failure(interaction)
            return
        # The session stays active even when the confirmation cannot be shown.
        try:
            if outcome.ok:
                await interaction.response.edit_message(content=outcome_message(outcome), view=None)
            else:
                await interaction.response.send_message(outcome_message(outcome), ephemeral=True)
        except discord.HTTPException as exc:
            self.logger.log("rolepost.choice_ack_failed", user_id=interaction.user.id, error=str(exc)[:300])

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        if message.guild is None:
            await self.process_commands(message)
            return
        role_id = self.sessions.get_active_role(message.channel.id, message.author.id)
        if role_id is None:
            await self.process_commands(message)
            return
        await self.relay_as_persona(message, role_id)

    async def relay_as_persona(self, message: discord.Message, role_id: int) -> bool:
        attachment_url = first_image_url(message)
        if not message.content and not attachment_url:
            return False
        if self.catalog.style_for(role_id) is None:
            self.logger.log("embed.unknown_role", role_id=role_id)
        embed = make_persona_embed(message.content, role_id, self.catalog, attachment_url)
        try:
            await message.channel.send(embed=embed)
        except discord.HTTPException as exc:
            self.logger.log("rolepost.relay_failed", user_id=message.author.id, role_id=role_id, error=str(exc)[:300])
            return False
        try:
            await message.delete()
        except discord.HTTPException as exc:
            self.logger.log("rolepost.delete_failed", user_id=message.author.id, error=str(exc)[:300])
        return True

    async def on_command_error(self, ctx: commands.Context, exception: Exception) -> None:
        if isinstance(exception, commands.CommandNotFound):
            return
        if isinstance(exception, commands.CheckFailure):
            await ctx.send("Not authorized.")
            return
        self.logger.log("command.error", command=str(ctx.command), error=str(exception)[:300])

    async def close(self) -> None:
        for task in (self._member_sync_task, self._log_relay_task, self._autosave_task):
            if task is not None and not task.done():
                task.cancel()
        if self.store.dirty:
            await self.store.save()
        await super().close()


async def _send_failure(interaction: discord.Interaction) -> None:
    try:
        if interaction.response.is_done():
            await interaction.followup.send(GENERIC_FAILURE_TEXT, ephemeral=True)
        else:
            await interaction.response.send_message(GENERIC_FAILURE_TEXT, ephemeral=True)
    except discord.HTTPException:
        pass


def _member_role_ids(user: discord.abc.User | discord.Member) -> list[int] | None:
    # Only guild members carry roles; a bare User means the guild snapshot is missing.
    roles = getattr(user, "roles", None)
    if roles is None:
        return None
    return [role.id for role in roles]


async def deploy_commands(settings: Settings) -> list[app_commands.AppCommand]:
    client = discord.Client(intents=discord.Intents.none())
    tree = app_commands.CommandTree(client)
    async with client:
        await client.login(settings.discord_token)
        tree.clear_commands(guild=None)
        await tree.sync()
        tree.add_command(rolepost_command)
        print("Registering global commands...")
        registered = await tree.sync()
        print(f"Global commands registered: {len(registered)}")
    return registered


def main() -> None:
    settings = Settings.load()
    bot = RolepostBot(settings)
    bot.run(settings.discord_token)


def deploy_main() -> None:
    asyncio.run(deploy_commands(Settings.load()))
