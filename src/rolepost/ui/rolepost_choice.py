from __future__ import annotations

import re

import discord

from rolepost.services.rolepost_service import (
    CHOICE_TOKEN_PATTERN,
    OUTCOME_ACTIVATED,
    OUTCOME_AWAITING_CHOICE,
    OUTCOME_DEACTIVATED,
    OUTCOME_NOT_ELIGIBLE,
    OUTCOME_REJECTED,
    REJECT_UNAUTHORIZED,
    REJECT_UNKNOWN_PERSONA,
    RolepostOutcome,
    encode_choice_token,
)

GENERIC_FAILURE_TEXT = "An error occurred while running the command."


class RolepostChoiceSelect(discord.ui.DynamicItem[discord.ui.Select], template=CHOICE_TOKEN_PATTERN):
    """Persona picker whose custom id carries the (channel, user) it was issued for."""

    def __init__(self, channel_id: int, user_id: int, options: list[discord.SelectOption] | None = None) -> None:
        self.channel_id = int(channel_id)
        self.user_id = int(user_id)
        super().__init__(
            discord.ui.Select(
                custom_id=encode_choice_token(self.channel_id, self.user_id),
                placeholder="Choose a speaking mode",
                min_values=1,
                max_values=1,
                options=list(options or [])[:25],
            )
        )

    @classmethod
    async def from_custom_id(
        cls,
        interaction: discord.Interaction,
        item: discord.ui.Select,
        match: re.Match[str],
        /,
    ) -> "RolepostChoiceSelect":
        return cls(int(match["channel_id"]), int(match["user_id"]))

    async def callback(self, interaction: discord.Interaction) -> None:
        handler = getattr(interaction.client, "handle_rolepost_choice", None)
        if handler is None:
            await interaction.response.send_message("Speaking mode handler unavailable.", ephemeral=True)
            return
        values = (interaction.data or {}).get("values") or []
        raw_value = str(values[0]).strip() if values else ""
        await handler(interaction=interaction, token=self.item.custom_id, raw_value=raw_value)


def build_choice_view(channel_id: int, user_id: int, outcome: RolepostOutcome) -> discord.ui.View:
    options = [
        discord.SelectOption(
            label=persona.label[:100],
            value=str(persona.representative_role_id),
            emoji=persona.style.emoji or None,
        )
        for persona in outcome.personas
    ]
    view = discord.ui.View(timeout=None)
    view.add_item(RolepostChoiceSelect(channel_id, user_id, options))
    return view


def outcome_message(outcome: RolepostOutcome) -> str:
    if outcome.kind == OUTCOME_DEACTIVATED:
        return "Role speaking mode is now **OFF**."
    if outcome.kind == OUTCOME_NOT_ELIGIBLE:
        return "You do not hold any role that can use speaking mode."
    if outcome.kind == OUTCOME_ACTIVATED:
        return f"Role speaking mode is now **ON**. ({outcome.label})"
    if outcome.kind == OUTCOME_AWAITING_CHOICE:
        return "Which mode do you want to enable speaking mode for?"
    if outcome.kind == OUTCOME_REJECTED:
        if outcome.reason == REJECT_UNAUTHORIZED:
            return "Only the member who ran the command can use this menu."
        if outcome.reason == REJECT_UNKNOWN_PERSONA:
            return "That role can no longer be used for speaking mode."
        return "This menu is no longer valid. Run /rolepost again."
    return GENERIC_FAILURE_TEXT
