"""
Wire messages exchanged with relay clients (JSON text frames)

client -> server:  hello{id}, update{state}
server -> client:  state{clients}, goodbye{id}, ping
"""
import json
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Union


@dataclass(frozen=True)
class Hello:
    id: str


@dataclass(frozen=True)
class Update:
    state: Any


Message = Union[Hello, Update]

PING = {"type": "ping"}


def parse_message(text: str) -> Optional[Message]:
    """
    Decode one inbound frame.

    Returns None for anything the relay does not understand: invalid JSON,
    non-object payloads, unknown types and missing or empty required fields.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    kind = data.get("type")
    if kind == "hello":
        client_id = data.get("id")
        # bool is an int subclass but never a sensible identity
        if isinstance(client_id, bool) or not isinstance(client_id, (str, int, float)):
            return None
        if not client_id:
            return None
        if isinstance(client_id, float):
            # Whole numbers read the same as their integer form (1.0 -> "1")
            if not math.isfinite(client_id):
                return None
            if client_id.is_integer():
                client_id = int(client_id)
        return Hello(id=str(client_id))

    if kind == "update":
        state = data.get("state")
        if state is None:
            return None
        return Update(state=state)

    return None


def state_message(clients: List[Any]) -> dict:
    return {"type": "state", "clients": list(clients)}


def goodbye_message(client_id: str) -> dict:
    return {"type": "goodbye", "id": client_id}


def encode(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":"))
