from __future__ import annotations


class SessionStore:
    """In-memory speaking-mode sessions keyed by (channel_id, user_id).

    A key is present only while the user speaks as a persona in that channel.
    Nothing here is persisted; a restart drops every session.
    """

    def __init__(self) -> None:
        self._sessions: dict[tuple[int, int], int] = {}

    def is_active(self, channel_id: int, user_id: int) -> bool:
        return (int(channel_id), int(user_id)) in self._sessions

    def get_active_role(self, channel_id: int, user_id: int) -> int | None:
        return self._sessions.get((int(channel_id), int(user_id)))

    def activate(self, channel_id: int, user_id: int, role_id: int) -> None:
        self._sessions[(int(channel_id), int(user_id))] = int(role_id)

    def deactivate(self, channel_id: int, user_id: int) -> None:
        self._sessions.pop((int(channel_id), int(user_id)), None)

    def __len__(self) -> int:
        return len(self._sessions)
