"""
Post-commit side effects.

Services never talk to printers or the realtime gateway themselves. They return
a list of effects next to their result, and the router hands that list to the
dispatcher as a background task, which runs only after the response (and so the
commit) has gone out.
"""
import logging
from dataclasses import dataclass, field

import httpx
from fastapi.encoders import jsonable_encoder

from tableside.config import settings

logger = logging.getLogger(__name__)


# ── Rooms ───────────────────────────────────────────────────────────────────
def kitchen_room(outlet_id: str) -> str:
    return f"kitchen:{outlet_id}"

def station_room(outlet_id: str, station: str) -> str:
    return f"station:{outlet_id}:{station}"

def captain_room(outlet_id: str) -> str:
    return f"captain:{outlet_id}"

def floor_room(outlet_id: str, floor_id: str) -> str:
    return f"floor:{outlet_id}:{floor_id}"

def outlet_room(outlet_id: str) -> str:
    return f"outlet:{outlet_id}"

def kot_rooms(outlet_id: str, station: str) -> tuple[str, ...]:
    return (kitchen_room(outlet_id), station_room(outlet_id, station))

def table_rooms(outlet_id: str, floor_id: str | None) -> tuple[str, ...]:
    if floor_id:
        return (floor_room(outlet_id, floor_id), outlet_room(outlet_id))
    return (outlet_room(outlet_id),)


# ── Effect types ────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Broadcast:
    rooms: tuple[str, ...]
    event: str
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PrintJob:
    kind: str  # kot / cancel_slip / bill
    station: str | None
    payload: dict = field(default_factory=dict)


Effect = Broadcast | PrintJob


# ── Dispatcher ──────────────────────────────────────────────────────────────
class EffectDispatcher:
    """Best-effort delivery; a failed effect is logged and never re-raised."""

    def __init__(self, notify_url: str | None, print_agent_url: str | None, timeout: float = 3.0):
        self.notify_url = notify_url
        self.print_agent_url = print_agent_url
        self.timeout = timeout

    async def dispatch(self, effects: list[Effect]):
        for effect in effects:
            try:
                await self._deliver(effect)
            except Exception:
                # printer agent or gateway might be offline; the action already committed
                logger.exception("effect delivery failed: %r", effect)

    async def _deliver(self, effect: Effect):
        if isinstance(effect, Broadcast):
            url = self.notify_url
            body = {"rooms": list(effect.rooms), "event": effect.event, "payload": effect.payload}
        else:
            url = self.print_agent_url
            body = {"type": effect.kind, "station": effect.station, **effect.payload}

        if not url:
            logger.info("no endpoint configured, dropping %s", _describe(effect))
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.post(url, json=jsonable_encoder(body))
            r.raise_for_status()
        logger.debug("delivered %s", _describe(effect))


def _describe(effect: Effect) -> str:
    if isinstance(effect, Broadcast):
        return f"broadcast {effect.event} -> {','.join(effect.rooms)}"
    return f"print {effect.kind} @ {effect.station}"


_dispatcher = EffectDispatcher(settings.NOTIFY_URL, settings.PRINT_AGENT_URL, settings.EFFECT_TIMEOUT)

def get_dispatcher() -> EffectDispatcher:
    return _dispatcher
