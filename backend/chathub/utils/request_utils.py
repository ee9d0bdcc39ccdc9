# /chathub/utils/request_utils.py

from typing import Optional, Union

from fastapi import Request, WebSocket


def get_remote_address(request: Union[Request, WebSocket]) -> str:
    """
    Safely returns the client's IP address from a request or websocket.
    """
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def get_origin(websocket: WebSocket) -> Optional[str]:
    """Origin header of a websocket handshake, if the browser sent one."""
    return websocket.headers.get("origin")
