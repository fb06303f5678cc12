from __future__ import annotations

import asyncio

import aiohttp

from rolepost.services.logger_service import LoggerService

# Rows naming a member, channel or message text are dropped whole, not redacted.
# Keys match the "key=value" rendering of render_row().
EXCLUDE_KEYWORDS: tuple[str, ...] = (
    "channel_id=",
    "user_id=",
    "responder_id=",
    "author_id=",
    "discord_id=",
    "content=",
    "token=",
)
WEBHOOK_CONTENT_LIMIT = 2000
QUEUE_LIMIT = 500


class LogRelayService:
    def __init__(self, webhook_url: str, logger: LoggerService) -> None:
        self.webhook_url = webhook_url.strip()
        self.logger = logger
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=QUEUE_LIMIT)
        self.dropped = 0
        if self.enabled():
            logger.subscribe(self.on_log_row)

    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def on_log_row(self, row: dict[str, object]) -> None:
        payload = format_webhook_payload(render_row(row))
        if payload is None:
            return
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.dropped += 1

    async def run_loop(self) -> None:
        while True:
            payload = await self.queue.get()
            try:
                await self.send(payload)
            except Exception as exc:  # noqa: BLE001
                print(f"[WebhookError] relay send crashed: {exc!r}")
            finally:
                self.queue.task_done()

    async def send(self, payload: str) -> bool:
        # Failures go to stdout only; logging them would feed back into this relay.
        timeout = aiohttp.ClientTimeout(total=10)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.webhook_url, json={"content": payload}) as response:
                    if response.status >= 400:
                        print(f"[WebhookError] Failed to send log: {response.status}")
                        return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            print(f"[WebhookError] {exc!r}")
            return False
        return True


def render_row(row: dict[str, object]) -> str:
    data = row.get("data")
    parts = [f"[{row.get('ts', '')}]", str(row.get("event", ""))]
    if isinstance(data, dict) and data:
        parts.append(" ".join(f"{key}={value}" for key, value in data.items()))
    return " ".join(part for part in parts if part)


def format_webhook_payload(raw_text: str) -> str | None:
    if any(keyword in raw_text for keyword in EXCLUDE_KEYWORDS):
        return None
    cleaned = raw_text.strip()
    if not cleaned:
        return None
    fence = "```"
    room = WEBHOOK_CONTENT_LIMIT - len(fence) * 2 - 2
    if len(cleaned) > room:
        cleaned = cleaned[: room - 3] + "..."
    return f"{fence}\n{cleaned}\n{fence}"
