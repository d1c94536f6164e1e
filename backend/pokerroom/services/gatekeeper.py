import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from flask import current_app

from pokerroom.errors import Unauthorized
from pokerroom.models import Participant


@dataclass(frozen=True)
class ConnectionContext:
    """Identity a connection established when it joined a room."""
    user_id: str
    room_code: str
    display_name: str
    sid: Optional[str] = None


class Gatekeeper:
    """Maps live connections to room identities and answers admin checks.

    Roles are read from the participant roster on every check, so a
    promotion or demotion takes effect on the next action.
    """

    def __init__(self):
        self._contexts: Dict[str, ConnectionContext] = {}
        self._lock = threading.Lock()

    def bind(self, sid: str, user_id: str, room_code: str, display_name: str) -> ConnectionContext:
        ctx = ConnectionContext(user_id=user_id, room_code=room_code.upper(), display_name=display_name, sid=sid)
        with self._lock:
            self._contexts[sid] = ctx
        return ctx

    def resolve(self, sid: str) -> Optional[ConnectionContext]:
        with self._lock:
            return self._contexts.get(sid)

    def unbind(self, sid: str) -> Optional[ConnectionContext]:
        with self._lock:
            return self._contexts.pop(sid, None)

    def connections_for(self, room_code: str, user_id: str = None) -> List[ConnectionContext]:
        with self._lock:
            return [c for c in self._contexts.values()
                    if c.room_code == room_code and (user_id is None or c.user_id == user_id)]

    def forget_room(self, room_code: str) -> None:
        with self._lock:
            for sid in [s for s, c in self._contexts.items() if c.room_code == room_code]:
                del self._contexts[sid]

    @staticmethod
    def member(user_id: str, room_code: str) -> Optional[Participant]:
        return Participant.query.filter_by(room_code=room_code, user_id=user_id).first()

    def is_admin(self, user_id: str, room_code: str) -> bool:
        if not user_id or not room_code:
            return False
        p = self.member(user_id, room_code)
        return bool(p and p.is_admin)

    def require_member(self, ctx: Optional[ConnectionContext], room_code: str) -> Participant:
        if ctx is None:
            raise Unauthorized('You must join a room first')
        if ctx.room_code != room_code:
            raise Unauthorized('You are not a member of this room')
        p = self.member(ctx.user_id, room_code)
        if p is None:
            raise Unauthorized('You are not a member of this room')
        return p

    def require_admin(self, ctx: Optional[ConnectionContext], room_code: str) -> Participant:
        p = self.require_member(ctx, room_code)
        if not p.is_admin:
            current_app.logger.info(f"[denied] user={ctx.user_id} room={room_code} role={p.role}")
            raise Unauthorized('Only room admin can perform this action')
        return p
