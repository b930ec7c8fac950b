"""
BuildingLink tenant portal client

Each accessor goes through PortalSession.page() for server-rendered pages or
PortalSession.fetch() for the JSON endpoints, then hands the payload to a
parser in portal_parsers.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin

from portal_config import Config, Credentials
from portal_errors import ConfigurationError
from portal_models import (
    Announcement,
    Building,
    Delivery,
    Event,
    Library,
    LibraryDocument,
    Occupant,
    User,
    Vendor,
)
from portal_parsers import (
    parse_announcements,
    parse_buildings,
    parse_deliveries,
    parse_events,
    parse_library_documents,
    parse_occupant,
    parse_user,
    parse_vendors,
)
from portal_session import PortalPage, PortalSession

logger = logging.getLogger(__name__)

# Tenant portal pages (relative to Config.TENANT_BASE_URL)
DELIVERIES_PAGE = "Deliveries/Deliveries.aspx"
APT_DOCUMENTS_PAGE = "Library/ApartmentDocuments.aspx"
BUILDING_DOCUMENTS_PAGE = "Library/BuildingDocuments.aspx"
VENDORS_PAGE = "Vendors/PreferredVendors.aspx"

# JSON endpoints (relative to Config.API_BASE_URL)
BUILDINGS_ENDPOINT = "Tenant/v1/properties"
OCCUPANT_ENDPOINT = "Tenant/v1/occupant"
ANNOUNCEMENTS_ENDPOINT = "Tenant/v1/announcements"
EVENTS_ENDPOINT = "Tenant/v1/calendar/events"
USER_ENDPOINT = "Users/v1/me"

JSON_HEADERS = {'Accept': 'application/json'}


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


class BuildingLink:
    """Typed access to one BuildingLink account.

    Example::

        async with BuildingLink(load_credentials()) as bl:
            for delivery in await bl.get_deliveries():
                print(delivery.type, delivery.location)
    """

    def __init__(
        self,
        credentials: Credentials,
        tenant_base_url: str = Config.TENANT_BASE_URL,
        login_url: str = Config.LOGIN_URL,
        api_base_url: str = Config.API_BASE_URL,
    ):
        self._credentials = credentials
        self.api_base_url = api_base_url
        self._session = PortalSession(credentials, tenant_base_url=tenant_base_url, login_url=login_url)

    async def login(self) -> Optional[str]:
        return await self._session.login()

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    async def close(self):
        await self._session.close()

    async def __aenter__(self) -> "BuildingLink":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _get_json(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        response = await self._session.fetch(
            urljoin(self.api_base_url, endpoint),
            params=params,
            headers={**JSON_HEADERS, **(headers or {})},
        )
        return response.json()

    async def _page(self, path: str) -> PortalPage:
        page = await self._session.page(path)
        if page.document is None:
            logger.warning(f"{path} returned {page.response.content_type or 'no content type'}, not HTML")
        return page

    # ---------------- JSON-backed accessors ----------------

    async def get_buildings(self) -> List[Building]:
        return parse_buildings(await self._get_json(BUILDINGS_ENDPOINT))

    async def get_occupant(self) -> Occupant:
        return parse_occupant(await self._get_json(OCCUPANT_ENDPOINT))

    async def get_announcements(self) -> List[Announcement]:
        """Active announcements only"""
        payload = await self._get_json(ANNOUNCEMENTS_ENDPOINT, params={'activeOnly': 'true'})
        return parse_announcements(payload)

    async def get_events(
        self,
        from_date: Union[date, datetime],
        to_date: Union[date, datetime],
    ) -> List[Event]:
        """Calendar events between two dates (inclusive).

        Datetimes are reduced to their calendar date, so aware and naive
        values can be mixed.
        """
        start, end = _as_date(from_date), _as_date(to_date)
        if end < start:
            raise ValueError("to_date must not be before from_date")
        payload = await self._get_json(
            EVENTS_ENDPOINT,
            params={'from': start.isoformat(), 'to': end.isoformat()},
        )
        return parse_events(payload)

    async def get_user(self) -> User:
        """The account profile; needs the API key"""
        if self._credentials.api_key is None:
            raise ConfigurationError("BUILDINGLINK_API_KEY environment variable is required for get_user")
        payload = await self._get_json(
            USER_ENDPOINT,
            headers={Config.API_KEY_HEADER: self._credentials.api_key.get_secret_value()},
        )
        return parse_user(payload)

    # ---------------- Scraped accessors ----------------

    async def get_deliveries(self) -> List[Delivery]:
        page = await self._page(DELIVERIES_PAGE)
        return parse_deliveries(page.document) if page.document is not None else []

    async def get_library(self, include_files: bool = False) -> Library:
        """Apartment and building documents.

        With include_files, each document's file is downloaded into
        file_bytes (never serialized).
        """
        library = Library(
            apt_documents=await self._library_documents(APT_DOCUMENTS_PAGE),
            building_documents=await self._library_documents(BUILDING_DOCUMENTS_PAGE),
        )
        if include_files:
            for document in library.apt_documents + library.building_documents:
                await self._download(document)
        return library

    async def _library_documents(self, path: str) -> List[LibraryDocument]:
        page = await self._page(path)
        if page.document is None:
            return []
        return parse_library_documents(page.document, page.response.url)

    async def _download(self, document: LibraryDocument):
        if not document.url:
            return
        response = await self._session.fetch(document.url)
        document.file_bytes = response.body
        logger.debug(f"Downloaded {document.title} ({len(response.body)} bytes)")

    async def get_vendors(self) -> List[Vendor]:
        page = await self._page(VENDORS_PAGE)
        return parse_vendors(page.document) if page.document is not None else []
