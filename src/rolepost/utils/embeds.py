from __future__ import annotations

import discord

from rolepost.services.persona_service import PersonaCatalog

DEFAULT_EMBED_COLOR = 0x3498DB


def make_persona_embed(
    content: str,
    role_id: int,
    catalog: PersonaCatalog,
    attachment_url: str | None = None,
) -> discord.Embed:
    """
    Build the embed that re-posts a member's message under their persona.

    Roles without a configured style still get an embed, tagged in the footer
    so staff can spot the missing entry in role_config.json.
    """

    style = catalog.style_for(role_id)
    if style is None:
        embed = discord.Embed(description=content)
        embed.set_footer(text=f"ROLE_ID:{role_id} (undefined)")
    else:
        group = catalog.group_for_role(role_id)
        name = style.embed_name or (group.label if group else str(role_id))
        embed = discord.Embed(
            description=content,
            color=style.embed_color if style.embed_color is not None else DEFAULT_EMBED_COLOR,
        )
        embed.set_author(name=name[:256], icon_url=style.embed_icon or None)
    if attachment_url:
        embed.set_image(url=attachment_url)
    return embed


def first_image_url(message: discord.Message) -> str | None:
    for attachment in message.attachments:
        content_type = str(getattr(attachment, "content_type", "") or "")
        if content_type.startswith("image/"):
            return attachment.url
    return None
