#!/usr/bin/env python3
"""
Tests for the BuildingLink MCP Server tools
"""

import json
from datetime import datetime

import pytest
from unittest.mock import patch, AsyncMock, MagicMock
from fastmcp.exceptions import ToolError

import server
from server import (
    login,
    get_buildings,
    get_occupant,
    get_announcements,
    get_deliveries,
    get_events,
    get_library,
    get_vendors,
    get_user,
    parse_iso_date,
    to_json,
    TOOLS,
)
from portal_errors import CredentialsRejectedError, SessionExpiredError
from portal_models import (
    Announcement,
    Building,
    Delivery,
    Library,
    LibraryDocument,
    Occupant,
    User,
    Vendor,
)


def mock_client(token=None):
    """A client whose accessors are AsyncMocks"""
    bl = MagicMock()
    bl.login = AsyncMock(return_value=token)
    bl.is_authenticated = True
    return bl


class TestUtilityFunctions:
    """Test utility functions"""

    def test_to_json_models(self):
        """Test records serialize with ISO dates"""
        result = json.loads(to_json([Delivery(id="d1", type="Package", received_at=datetime(2025, 1, 15, 10, 30))]))
        assert result == [{
            "id": "d1",
            "type": "Package",
            "location": None,
            "description": None,
            "received_at": "2025-01-15T10:30:00",
            "authorization": None,
        }]

    def test_to_json_drops_file_bytes(self):
        """Test downloaded file contents never reach the tool output"""
        library = Library(apt_documents=[LibraryDocument(title="Lease", file_bytes=b"%PDF")])
        result = json.loads(to_json(library))
        assert "file_bytes" not in result["apt_documents"][0]

    def test_to_json_plain_data(self):
        assert json.loads(to_json({"authenticated": True})) == {"authenticated": True}

    def test_parse_iso_date(self):
        assert parse_iso_date("2025-01-31") == datetime(2025, 1, 31)

    def test_parse_iso_date_invalid(self):
        with pytest.raises(ValueError) as exc_info:
            parse_iso_date("31/01/2025")
        assert "ISO 8601" in str(exc_info.value)

    def test_all_tools_registered(self):
        names = [tool.__name__ for tool in TOOLS]
        assert names == [
            "login", "get_buildings", "get_occupant", "get_announcements", "get_deliveries",
            "get_events", "get_library", "get_vendors", "get_user",
        ]


class TestTools:
    """Test tool calls against a mocked client"""

    def setup_method(self):
        """Drop any shared client between tests"""
        server._client = None

    def teardown_method(self):
        server._client = None

    @pytest.mark.asyncio
    async def test_login(self):
        """Test the login tool reports authentication and token presence"""
        bl = mock_client(token="tok-123")
        with patch.object(server, 'get_client', return_value=bl):
            result = json.loads(await login())

        assert result == {"authenticated": True, "hasToken": True}

    @pytest.mark.asyncio
    async def test_login_without_token(self):
        bl = mock_client()
        with patch.object(server, 'get_client', return_value=bl):
            result = json.loads(await login())

        assert result["hasToken"] is False

    @pytest.mark.asyncio
    async def test_get_buildings(self):
        bl = mock_client()
        bl.get_buildings = AsyncMock(return_value=[Building(id="101", name="The Towers", latitude=39.8)])
        with patch.object(server, 'get_client', return_value=bl):
            result = json.loads(await get_buildings())

        bl.login.assert_awaited_once()
        assert result[0]["name"] == "The Towers"
        assert result[0]["latitude"] == 39.8

    @pytest.mark.asyncio
    async def test_get_occupant(self):
        bl = mock_client()
        bl.get_occupant = AsyncMock(return_value=Occupant(first_name="Pat", unit="12B"))
        with patch.object(server, 'get_client', return_value=bl):
            result = json.loads(await get_occupant())

        assert result["unit"] == "12B"

    @pytest.mark.asyncio
    async def test_get_announcements(self):
        bl = mock_client()
        bl.get_announcements = AsyncMock(return_value=[Announcement(title="Water shutoff", is_urgent=True)])
        with patch.object(server, 'get_client', return_value=bl):
            result = json.loads(await get_announcements())

        assert result[0]["is_urgent"] is True

    @pytest.mark.asyncio
    async def test_get_deliveries_empty(self):
        """Test no open deliveries is an empty list, not an error"""
        bl = mock_client()
        bl.get_deliveries = AsyncMock(return_value=[])
        with patch.object(server, 'get_client', return_value=bl):
            result = json.loads(await get_deliveries())

        assert result == []

    @pytest.mark.asyncio
    async def test_get_events(self):
        """Test date arguments are parsed before reaching the client"""
        bl = mock_client()
        bl.get_events = AsyncMock(return_value=[])
        with patch.object(server, 'get_client', return_value=bl):
            await get_events("2025-01-01", "2025-01-31")

        bl.get_events.assert_awaited_once_with(datetime(2025, 1, 1), datetime(2025, 1, 31))

    @pytest.mark.asyncio
    async def test_get_events_missing_dates(self):
        bl = mock_client()
        bl.get_events = AsyncMock(return_value=[])
        with patch.object(server, 'get_client', return_value=bl):
            with pytest.raises(ToolError) as exc_info:
                await get_events("", "2025-01-31")

        assert "Error: from_date and to_date are required" in str(exc_info.value)
        bl.get_events.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_events_invalid_date(self):
        bl = mock_client()
        bl.get_events = AsyncMock(return_value=[])
        with patch.object(server, 'get_client', return_value=bl):
            with pytest.raises(ToolError) as exc_info:
                await get_events("yesterday", "2025-01-31")

        assert "Invalid date format" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_get_library(self):
        bl = mock_client()
        bl.get_library = AsyncMock(return_value=Library(
            apt_documents=[LibraryDocument(id="11", title="Lease 2025")],
            building_documents=[LibraryDocument(id="21", title="House Rules")],
        ))
        with patch.object(server, 'get_client', return_value=bl):
            result = json.loads(await get_library())

        assert result["apt_documents"][0]["title"] == "Lease 2025"
        assert result["building_documents"][0]["id"] == "21"

    @pytest.mark.asyncio
    async def test_get_vendors(self):
        bl = mock_client()
        bl.get_vendors = AsyncMock(return_value=[Vendor(name="Sparkle Cleaning")])
        with patch.object(server, 'get_client', return_value=bl):
            result = json.loads(await get_vendors())

        assert result[0]["name"] == "Sparkle Cleaning"

    @pytest.mark.asyncio
    async def test_get_user(self):
        bl = mock_client()
        bl.get_user = AsyncMock(return_value=User(username="resident@example.com"))
        with patch.object(server, 'get_client', return_value=bl):
            result = json.loads(await get_user())

        assert result["username"] == "resident@example.com"


class TestToolErrors:
    """Test failures surface as tool errors"""

    def setup_method(self):
        server._client = None

    def teardown_method(self):
        server._client = None

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        bl = mock_client()
        bl.login = AsyncMock(side_effect=CredentialsRejectedError("Invalid login attempt."))
        with patch.object(server, 'get_client', return_value=bl):
            with pytest.raises(ToolError) as exc_info:
                await get_deliveries()

        assert str(exc_info.value) == "Error: Invalid login attempt."

    @pytest.mark.asyncio
    async def test_session_expired(self):
        bl = mock_client()
        bl.get_vendors = AsyncMock(side_effect=SessionExpiredError("Session expired again after re-login"))
        with patch.object(server, 'get_client', return_value=bl):
            with pytest.raises(ToolError) as exc_info:
                await get_vendors()

        assert "Session expired" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_credentials(self, monkeypatch):
        """Test a missing username/password is reported, not raised raw"""
        monkeypatch.delenv("BUILDINGLINK_USERNAME", raising=False)
        monkeypatch.delenv("BUILDINGLINK_PASSWORD", raising=False)

        with pytest.raises(ToolError) as exc_info:
            await get_buildings()

        assert "BUILDINGLINK_USERNAME and BUILDINGLINK_PASSWORD" in str(exc_info.value)
        assert server._client is None

    @pytest.mark.asyncio
    async def test_client_reused_after_failure(self):
        """Test the shared client survives a failed call"""
        bl = mock_client()
        bl.get_occupant = AsyncMock(side_effect=[SessionExpiredError("expired"), Occupant(unit="12B")])
        server._client = bl

        with pytest.raises(ToolError):
            await get_occupant()
        result = json.loads(await get_occupant())

        assert result["unit"] == "12B"
        assert server.get_client() is bl


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
