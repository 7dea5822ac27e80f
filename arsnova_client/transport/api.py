"""
ARSnova REST API

Request/response calls the synchronization engine depends on: guest login,
room lookup, feedback polling and room statistics. Also opens the STOMP
WebSocket on the same aiohttp session.
"""

import base64
import binascii
import json
import logging
from typing import Any, Optional

import aiohttp

from ..core.config_manager import ClientConfiguration
from ..core.errors import ApiConnectionError, LoginError, ParserError, RoomNotFoundError
from ..feedback.models import Feedback, RoomInfo, RoomStats, SessionContext

logger = logging.getLogger('arsnova.transport.api')


def user_id_from_token(token: str) -> str:
    """
    Extract the user ID (``sub`` claim) from a JWT.

    Raises:
        ParserError: If the token or its claim cannot be decoded
    """
    parts = token.split('.')
    if len(parts) < 2:
        raise ParserError("Unparsable token")
    claim = parts[1]
    try:
        decoded = base64.urlsafe_b64decode(claim + '=' * (-len(claim) % 4))
        return json.loads(decoded.decode('utf-8'))['sub']
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ParserError(f"Unparsable token: {e}") from e
    except (KeyError, TypeError) as e:
        raise ParserError(f"Unparsable token claim: {e}") from e


class ArsnovaApi:
    """
    Thin async client for the ARSnova REST API.

    Owns one aiohttp session, created lazily and closed with ``close()``.
    """

    def __init__(self, config: ClientConfiguration, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.api_url = config.api_url
        self._session = session
        self._owns_session = session is None
        self._context: Optional[SessionContext] = None

    @property
    def context(self) -> Optional[SessionContext]:
        return self._context

    @property
    def is_logged_in(self) -> bool:
        return self._context is not None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={'User-Agent': self.config.user_agent},
            )
            self._owns_session = True
        return self._session

    def _auth_headers(self) -> dict:
        if self._context is None:
            raise LoginError("Client is not logged in")
        return {'Authorization': f"Bearer {self._context.token}"}

    async def guest_login(self) -> SessionContext:
        """
        Request a guest token.

        Raises:
            ApiConnectionError: On transport failures
            LoginError: If the response carries no usable token
        """
        try:
            async with self._get_session().post(f"{self.api_url}/auth/login/guest") as response:
                if response.status != 200:
                    raise LoginError(f"Cannot login: HTTP {response.status}")
                body = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ApiConnectionError(f"Cannot connect: {e}") from e
        except ValueError as e:
            raise LoginError(f"Cannot login: {e}") from e

        token = body.get('token') if isinstance(body, dict) else None
        if not token:
            raise LoginError()
        try:
            user_id = user_id_from_token(token)
        except ParserError as e:
            raise LoginError(f"Cannot login: {e}") from e

        self._context = SessionContext(token=token, user_id=user_id)
        logger.info("Logged in as guest")
        return self._context

    async def fetch_room_info(self, short_id: str) -> RoomInfo:
        """
        Request RoomInfo for an 8-digit room ID.

        Raises:
            RoomNotFoundError: If no room has that short ID
        """
        body = await self._request_json(
            'POST',
            f"{self.api_url}/room/~{short_id}/request-membership",
            not_found=short_id,
            headers={'ars-room-role': 'PARTICIPANT', 'Content-Type': 'application/json'},
            data='{}',
        )
        try:
            return RoomInfo(
                id=body['id'],
                short_id=body['shortId'],
                name=body['name'],
                description=body.get('description') or "",
            )
        except (KeyError, TypeError) as e:
            raise ParserError(f"missing field {e}") from e

    async def fetch_feedback(self, room_id: str) -> Feedback:
        """Poll the current Feedback of a room by its internal ID"""
        body = await self._request_json('GET', f"{self.api_url}/room/{room_id}/survey", not_found=room_id)
        try:
            return Feedback.from_values(body, room_id=room_id)
        except (TypeError, ValueError) as e:
            raise ParserError(str(e)) from e

    async def fetch_room_stats(self, room_id: str) -> RoomStats:
        """Request content and user counts of a room by its internal ID"""
        body = await self._request_json(
            'GET', f"{self.api_url}/_view/room/summary", not_found=room_id, params={'ids': room_id}
        )
        try:
            stats = body[0]['stats']
            return RoomStats(
                content_count=stats['contentCount'],
                ack_comment_count=stats['ackCommentCount'],
                room_user_count=stats['roomUserCount'],
            )
        except (IndexError, KeyError, TypeError) as e:
            raise ParserError(f"unexpected summary response: {e}") from e

    async def open_websocket(self) -> aiohttp.ClientWebSocketResponse:
        """
        Open the STOMP WebSocket.

        Raises:
            ApiConnectionError: If the handshake fails
        """
        try:
            return await self._get_session().ws_connect(self.config.websocket_url, autoping=True)
        except (aiohttp.ClientError, OSError) as e:
            raise ApiConnectionError(f"Cannot open websocket: {e}") from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request_json(self, method: str, url: str, not_found: str, **kwargs: Any) -> Any:
        headers = {**self._auth_headers(), **kwargs.pop('headers', {})}
        try:
            async with self._get_session().request(method, url, headers=headers, **kwargs) as response:
                if response.status == 404:
                    raise RoomNotFoundError(not_found)
                if response.status != 200:
                    raise ApiConnectionError(f"Unexpected HTTP {response.status} from {url}")
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise ParserError(str(e)) from e
        except aiohttp.ClientError as e:
            raise ApiConnectionError(f"Cannot connect: {e}") from e
