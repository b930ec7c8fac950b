#!/usr/bin/env python3
"""
BuildingLink MCP Server
Exposes a BuildingLink tenant account (deliveries, announcements, events,
documents, vendors and profiles) as MCP tools.

Authentication is configured with environment variables (or a .env file):
    BUILDINGLINK_USERNAME - BuildingLink login username
    BUILDINGLINK_PASSWORD - BuildingLink login password
    BUILDINGLINK_API_KEY  - (Optional) API key for the user endpoint
"""

import json
import logging
import os
from typing import Any, Awaitable, Callable, Optional

from dateutil import parser as date_parser
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import BaseModel

from buildinglink import BuildingLink
from portal_config import load_credentials

# MCP speaks over stdout, so logs go to stderr
logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO'),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize MCP server
mcp = FastMCP("buildinglink")

# Lazily-created client shared across tool calls
_client: Optional[BuildingLink] = None


def get_client() -> BuildingLink:
    """Return the shared client, creating it from environment credentials if needed"""
    global _client
    if _client is None:
        _client = BuildingLink(load_credentials())
    return _client


def to_json(data: Any) -> str:
    """Serialize records for a tool result; excluded fields (file bytes) are dropped"""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode='json')
    elif isinstance(data, list):
        data = [item.model_dump(mode='json') if isinstance(item, BaseModel) else item for item in data]
    return json.dumps(data, indent=2)


def parse_iso_date(value: str):
    try:
        return date_parser.isoparse(value)
    except (ValueError, OverflowError):
        raise ValueError("Invalid date format. Use ISO 8601 format (e.g. '2025-01-01')") from None


async def run_tool(name: str, call: Callable[[BuildingLink], Awaitable[Any]]) -> str:
    """Log in if needed, run the call and return JSON text.

    Any failure becomes a tool error; the shared client stays usable.
    """
    try:
        bl = get_client()
        await bl.login()
        return to_json(await call(bl))
    except Exception as e:
        logger.error(f"Tool {name} failed: {type(e).__name__}: {e}")
        raise ToolError(f"Error: {e}") from e


async def login() -> str:
    """
    Authenticate with BuildingLink. Must be called before other tools if not
    already authenticated. Reports whether a bearer token was issued.
    """
    async def call(bl: BuildingLink):
        token = await bl.login()
        return {"authenticated": bl.is_authenticated, "hasToken": bool(token)}

    return await run_tool("login", call)


async def get_buildings() -> str:
    """
    Get a list of authorized buildings/properties associated with the
    authenticated user. Returns property details including name, address,
    coordinates, and management info.
    """
    return await run_tool("get_buildings", lambda bl: bl.get_buildings())


async def get_occupant() -> str:
    """
    Get the current occupant's information including unit details, contact
    info, and occupancy status.
    """
    return await run_tool("get_occupant", lambda bl: bl.get_occupant())


async def get_announcements() -> str:
    """
    Get active announcements from the building management. Returns
    announcement content, dates, and distribution details.
    """
    return await run_tool("get_announcements", lambda bl: bl.get_announcements())


async def get_deliveries() -> str:
    """
    Get open deliveries/packages waiting for pickup. Returns delivery details
    including type, location, description, and authorization status.
    """
    return await run_tool("get_deliveries", lambda bl: bl.get_deliveries())


async def get_events(from_date: str, to_date: str) -> str:
    """
    Get calendar events within a date range. Returns event details including
    title, description, dates, RSVP status, and recurrence info.

    Args:
        from_date: Start date for the event range in ISO 8601 format (e.g. '2025-01-01')
        to_date: End date for the event range in ISO 8601 format (e.g. '2025-01-31')
    """
    async def call(bl: BuildingLink):
        if not from_date or not to_date:
            raise ValueError("from_date and to_date are required")
        return await bl.get_events(parse_iso_date(from_date), parse_iso_date(to_date))

    return await run_tool("get_events", call)


async def get_library() -> str:
    """
    Get the document library including both apartment-specific and
    building-wide documents. Documents are scraped from the BuildingLink web
    interface and include titles, categories, dates, and download URLs.
    """
    return await run_tool("get_library", lambda bl: bl.get_library())


async def get_vendors() -> str:
    """
    Get the list of preferred vendors/service providers for the building.
    Returns vendor details including name, category, contact info, address,
    and business hours.
    """
    return await run_tool("get_vendors", lambda bl: bl.get_vendors())


async def get_user() -> str:
    """
    Get the authenticated user's profile information including name, email,
    phone numbers, and account details. Requires the BUILDINGLINK_API_KEY
    environment variable to be set.
    """
    return await run_tool("get_user", lambda bl: bl.get_user())


TOOLS = [
    login,
    get_buildings,
    get_occupant,
    get_announcements,
    get_deliveries,
    get_events,
    get_library,
    get_vendors,
    get_user,
]

for tool in TOOLS:
    mcp.tool()(tool)


def main():
    """Main entry point for the MCP server"""
    logger.info("Starting BuildingLink MCP server")
    mcp.run()


# Run the server
if __name__ == "__main__":
    main()
