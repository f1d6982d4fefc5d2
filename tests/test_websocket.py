"""Unit tests for WebSocket connection manager."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from cospace.websocket.manager import (
    ConnectionManager,
    MessageType,
    WebSocketConnection,
    content_room,
    manager,
)


@pytest.fixture(autouse=True)
def local_only():
    """Run broadcasts without Redis."""
    with patch("cospace.websocket.manager.redis_service") as mock_redis:
        mock_redis.is_connected = False
        yield mock_redis


class TestMessageType:
    """Tests for MessageType enum."""

    def test_message_type_values(self):
        """Test that message types have expected string values."""
        assert MessageType.CONNECTED == "connected"
        assert MessageType.OPERATION == "operation"
        assert MessageType.PRESENCE_REMOVED == "presence_removed"
        assert MessageType.CATCHUP == "catchup"
        assert MessageType.PING == "ping"
        assert MessageType.PONG == "pong"

    def test_message_type_is_string(self):
        """Test that MessageType values are strings."""
        for msg_type in MessageType:
            assert isinstance(msg_type.value, str)

    def test_content_room(self):
        content_id = uuid4()
        assert content_room(content_id) == f"content:{content_id}"


class TestWebSocketConnection:
    """Tests for WebSocketConnection dataclass."""

    def test_connection_creation(self):
        """Test creating a WebSocketConnection."""
        mock_ws = MagicMock()
        user_id = uuid4()

        conn = WebSocketConnection(websocket=mock_ws, user_id=user_id)

        assert conn.websocket is mock_ws
        assert conn.user_id == user_id
        assert conn.connection_id
        assert isinstance(conn.connected_at, datetime)
        assert conn.rooms == set()

    def test_connection_equality(self):
        """Connections compare by connection id."""
        mock_ws = MagicMock()
        user_id = uuid4()

        conn1 = WebSocketConnection(websocket=mock_ws, user_id=user_id, connection_id="a")
        conn2 = WebSocketConnection(websocket=mock_ws, user_id=user_id, connection_id="a")
        conn3 = WebSocketConnection(websocket=mock_ws, user_id=user_id)

        assert conn1 == conn2
        assert hash(conn1) == hash(conn2)
        assert conn1 != conn3


class TestConnectionManagerInit:
    """Tests for ConnectionManager initialization."""

    def test_manager_init(self):
        """Test ConnectionManager initialization."""
        mgr = ConnectionManager()

        assert mgr._rooms == {}
        assert mgr._connections == {}
        assert mgr._user_connections == {}
        assert mgr.total_connections == 0
        assert mgr.total_rooms == 0

    def test_global_manager_exists(self):
        """Test that global manager instance exists."""
        assert isinstance(manager, ConnectionManager)


class TestConnectionManagerConnect:
    """Tests for connection handling."""

    @pytest.mark.asyncio
    async def test_connect_success(self):
        """Test successful WebSocket connection."""
        mgr = ConnectionManager()
        mock_ws = AsyncMock()
        user_id = uuid4()
        content_id = uuid4()

        connection = await mgr.connect(mock_ws, user_id, content_id=content_id)

        assert connection is not None
        assert connection.user_id == user_id
        assert connection.content_id == content_id
        assert mgr.total_connections == 1
        assert mgr.get_connection(connection.connection_id) is connection
        mock_ws.accept.assert_called_once()

    @pytest.mark.asyncio
    async def test_connection_limit(self):
        """Connections beyond the per-user limit are closed with 4029."""
        mgr = ConnectionManager()
        user_id = uuid4()

        with patch("cospace.websocket.manager.settings") as mock_settings:
            mock_settings.ws_max_connections_per_user = 2
            await mgr.connect(AsyncMock(), user_id)
            await mgr.connect(AsyncMock(), user_id)

            rejected_ws = AsyncMock()
            result = await mgr.connect(rejected_ws, user_id)

        assert result is None
        rejected_ws.close.assert_called_once()
        assert rejected_ws.close.call_args.kwargs["code"] == 4029
        assert mgr.get_user_connections_count(user_id) == 2

    @pytest.mark.asyncio
    async def test_disconnect_reports_emptied_rooms(self):
        """Disconnect removes the connection and returns rooms left empty."""
        mgr = ConnectionManager()
        conn1 = await mgr.connect(AsyncMock(), uuid4())
        conn2 = await mgr.connect(AsyncMock(), uuid4())

        await mgr.join_room(conn1, "shared")
        await mgr.join_room(conn2, "shared")
        await mgr.join_room(conn1, "solo")

        emptied = await mgr.disconnect(conn1)

        assert emptied == ["solo"]
        assert mgr.total_connections == 1
        assert mgr.get_room_count("shared") == 1
        assert conn1.rooms == set()

    @pytest.mark.asyncio
    async def test_disconnect_twice(self):
        """A second disconnect is a no-op."""
        mgr = ConnectionManager()
        connection = await mgr.connect(AsyncMock(), uuid4())
        await mgr.join_room(connection, "room")

        assert await mgr.disconnect(connection) == ["room"]
        assert await mgr.disconnect(connection) == []


class TestConnectionManagerRooms:
    """Tests for room membership and broadcasts."""

    @pytest.mark.asyncio
    async def test_join_and_leave_room(self):
        mgr = ConnectionManager()
        user_id = uuid4()
        connection = await mgr.connect(AsyncMock(), user_id)

        await mgr.join_room(connection, "room1")
        assert "room1" in connection.rooms
        assert mgr.get_room_users("room1") == [user_id]

        await mgr.leave_room(connection, "room1")
        assert "room1" not in connection.rooms
        assert mgr.total_rooms == 0

    @pytest.mark.asyncio
    async def test_broadcast_excludes_sender(self):
        """Test local broadcast skips the excluded connection."""
        mgr = ConnectionManager()
        mock_ws1 = AsyncMock()
        mock_ws2 = AsyncMock()
        conn1 = await mgr.connect(mock_ws1, uuid4())
        conn2 = await mgr.connect(mock_ws2, uuid4())
        await mgr.join_room(conn1, "room")
        await mgr.join_room(conn2, "room")

        message = {"type": MessageType.OPERATION.value, "op": {}}
        sent = await mgr.broadcast_to_room(
            "room", message, exclude_connection_id=conn1.connection_id
        )

        assert sent == 1
        mock_ws1.send_json.assert_not_called()
        mock_ws2.send_json.assert_called_once_with(message)

    @pytest.mark.asyncio
    async def test_broadcast_to_empty_room(self):
        mgr = ConnectionManager()
        assert await mgr.broadcast_to_room("nobody", {"type": "ping"}) == 0

    @pytest.mark.asyncio
    async def test_broadcast_via_redis(self, local_only):
        """With Redis connected the message is published, not sent locally."""
        local_only.is_connected = True
        local_only.publish = AsyncMock(return_value=True)
        mgr = ConnectionManager()
        mock_ws = AsyncMock()
        connection = await mgr.connect(mock_ws, uuid4())
        await mgr.join_room(connection, "room")

        await mgr.broadcast_to_room("room", {"type": "title_update"})

        local_only.publish.assert_awaited_once()
        payload = local_only.publish.await_args.args[1]
        assert payload["room_id"] == "room"
        mock_ws.send_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_redis_broadcast_delivers_locally(self):
        """Messages relayed from another worker reach local room members."""
        mgr = ConnectionManager()
        mock_ws = AsyncMock()
        connection = await mgr.connect(mock_ws, uuid4())
        await mgr.join_room(connection, "room")

        await mgr._handle_redis_broadcast(
            {"room_id": "room", "message": {"type": "presence"}, "exclude_conn_id": None}
        )
        mock_ws.send_json.assert_called_once_with({"type": "presence"})


class TestConnectionManagerHelpers:
    """Tests for helper methods."""

    @pytest.mark.asyncio
    async def test_send_personal_failure(self):
        """A failing socket reports False instead of raising."""
        mgr = ConnectionManager()
        mock_ws = AsyncMock()
        mock_ws.send_json.side_effect = RuntimeError("closed")
        connection = await mgr.connect(mock_ws, uuid4())

        assert await mgr.send_personal(connection, {"type": "pong"}) is False

    @pytest.mark.asyncio
    async def test_close_connection(self):
        mgr = ConnectionManager()
        mock_ws = AsyncMock()
        connection = await mgr.connect(mock_ws, uuid4())

        assert await mgr.close_connection(connection.connection_id, code=4008, reason="timeout")
        mock_ws.close.assert_called_once_with(code=4008, reason="timeout")

    def test_get_connection_nonexistent(self):
        """Test getting nonexistent connection."""
        mgr = ConnectionManager()
        assert mgr.get_connection("missing") is None

    @pytest.mark.asyncio
    async def test_close_unknown_connection(self):
        mgr = ConnectionManager()
        assert await mgr.close_connection("missing") is False
