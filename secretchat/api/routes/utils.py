# secretchat/api/routes/utils.py

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from fastapi import HTTPException

from secretchat.core.errors import InvalidInput, NotJoined, RelayError, RoomNotFound

_ROOM_PARAM = re.compile(r"room=([a-zA-Z0-9-]+)")
_BARE_ID = re.compile(r"^[a-zA-Z0-9-]+$")


def build_room_url(base_url: str, room_id: str) -> str:
    """
    Shareable link for a room: the site origin with a `room` query parameter.

        build_room_url("https://chat.example.com/", "abc") -> "https://chat.example.com?room=abc"
    """
    return f"{base_url.rstrip('/')}?{urlencode({'room': room_id})}"


def extract_room_id(link: Optional[str]) -> Optional[str]:
    """
    Pull a room id out of whatever the user pasted.

    Accepts a bare id, a full room URL (`...?room=<id>`), or any text that
    contains `room=<id>`. Returns None when nothing usable is found.
    """
    if not link:
        return None
    link = link.strip()
    if _BARE_ID.match(link):
        return link

    query = parse_qs(urlsplit(link).query)
    if query.get("room"):
        candidate = query["room"][0].strip()
        if _BARE_ID.match(candidate):
            return candidate

    match = _ROOM_PARAM.search(link)
    return match.group(1) if match else None


_STATUS_CODES = {
    InvalidInput: 400,
    RoomNotFound: 404,
    NotJoined: 409,
}


def http_error(error: RelayError) -> HTTPException:
    """Map a relay failure onto the HTTP status a REST client expects."""
    status_code = _STATUS_CODES.get(type(error), 500)
    return HTTPException(status_code=status_code, detail=error.message)
