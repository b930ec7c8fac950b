"""
Stateless parsers turning portal pages and API payloads into records

HTML parsers take a parsed document (anything with BeautifulSoup's
select/find_all/get_text interface); JSON parsers take the decoded payload.
Field names are matched in camelCase and PascalCase because the portal's
endpoints are not consistent about it.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from portal_models import (
    Announcement,
    Building,
    Delivery,
    Event,
    LibraryDocument,
    Occupant,
    User,
    Vendor,
)

logger = logging.getLogger(__name__)

# ASP.NET JSON dates: /Date(1700000000000)/ or /Date(1700000000000-0500)/
_DOTNET_DATE = re.compile(r'^/Date\((-?\d+)([+-]\d{4})?\)/$')


# ================== Helpers ==================

def parse_date(value: Any) -> Optional[datetime]:
    """Parse the date formats the portal uses; None when unparseable"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)

    text = str(value).strip()
    match = _DOTNET_DATE.match(text)
    if match:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)

    try:
        return date_parser.parse(text)
    except (ValueError, OverflowError):
        logger.debug(f"Unparseable date: {text!r}")
        return None


def _pick(item: Any, *keys: str, default: Any = None) -> Any:
    """First non-empty value among keys, trying each as camelCase and PascalCase"""
    if not isinstance(item, dict):
        return default
    for key in keys:
        for candidate in (key, key[:1].upper() + key[1:]):
            value = item.get(candidate)
            if value is not None and value != '':
                return value
    return default


def _items(payload: Any, *keys: str) -> List[Dict[str, Any]]:
    """The list of records in a payload, whether bare or wrapped"""
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    wrapped = _pick(payload, *keys, 'data', 'items', 'results')
    if isinstance(wrapped, list):
        return [item for item in wrapped if isinstance(item, dict)]
    return []


def _unwrap(payload: Any, *keys: str) -> Dict[str, Any]:
    inner = _pick(payload, *keys, 'data')
    if isinstance(inner, dict):
        return inner
    return payload if isinstance(payload, dict) else {}


def _str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _name(value: Any) -> Optional[str]:
    """A name that may come as a string or as {"name": ...}"""
    if isinstance(value, dict):
        return _pick(value, 'name', 'displayName')
    return _str(value)


def _phones(item: Dict[str, Any]) -> List[str]:
    phones = []
    listed = _pick(item, 'phones', 'phoneNumbers', default=[])
    for phone in listed if isinstance(listed, list) else []:
        number = _pick(phone, 'number', 'phoneNumber') if isinstance(phone, dict) else phone
        if number:
            phones.append(str(number))
    for key in ('homePhone', 'mobilePhone', 'cellPhone', 'workPhone', 'phone'):
        number = _pick(item, key)
        if number and str(number) not in phones:
            phones.append(str(number))
    return phones


def _plain_text(value: Any) -> Optional[str]:
    """Announcement bodies arrive as HTML fragments"""
    if not value:
        return None
    text = BeautifulSoup(str(value), 'lxml').get_text(' ', strip=True)
    return text or None


def _cell_text(cell: Any) -> Optional[str]:
    if cell is None:
        return None
    return cell.get_text(' ', strip=True) or None


def _table_rows(document: Any, required: Sequence[str]) -> List[Tuple[Any, Dict[str, Any]]]:
    """Rows of the first table whose header names every required column.

    Each row is returned with a mapping of lower-cased header text to cell.
    Rows with fewer than two cells (empty-state messages) are skipped.
    """
    for table in document.select('table'):
        header_cells = table.find_all('th')
        headers = [th.get_text(' ', strip=True).lower() for th in header_cells]
        if not all(any(column in header for header in headers) for column in required):
            continue

        rows = []
        for tr in table.find_all('tr'):
            cells = tr.find_all('td')
            if len(cells) < 2:
                continue
            rows.append((tr, dict(zip(headers, cells))))
        return rows
    return []


def _column(cells: Dict[str, Any], *names: str) -> Any:
    for name in names:
        for header, cell in cells.items():
            if name in header:
                return cell
    return None


# ================== JSON payloads ==================

def parse_buildings(payload: Any) -> List[Building]:
    buildings = []
    for item in _items(payload, 'properties', 'buildings'):
        address = _pick(item, 'address', default={})
        street = address if isinstance(address, str) else _pick(address, 'street', 'line1', 'address1')
        location = address if isinstance(address, dict) else {}
        buildings.append(Building(
            id=_str(_pick(item, 'id', 'propertyId', 'buildingId')),
            name=_pick(item, 'name', 'propertyName', 'buildingName', default='Unnamed property'),
            address=street,
            city=_pick(location, 'city') or _pick(item, 'city'),
            state=_pick(location, 'state', 'stateCode') or _pick(item, 'state'),
            postal_code=_str(_pick(location, 'postalCode', 'zip', 'zipCode') or _pick(item, 'postalCode', 'zip')),
            latitude=_float(_pick(location, 'latitude', 'lat') or _pick(item, 'latitude', 'lat')),
            longitude=_float(_pick(location, 'longitude', 'lng') or _pick(item, 'longitude', 'lng')),
            management_company=_name(_pick(item, 'managementCompany', 'managementCompanyName')),
            phone=_str(_pick(item, 'phone', 'frontDeskPhone')),
        ))
    return buildings


def parse_occupant(payload: Any) -> Occupant:
    item = _unwrap(payload, 'occupant')
    unit = _pick(item, 'unit', 'unitNumber')
    return Occupant(
        id=_str(_pick(item, 'id', 'occupantId')),
        first_name=_pick(item, 'firstName'),
        last_name=_pick(item, 'lastName'),
        unit=_name(unit) if isinstance(unit, dict) else _str(unit),
        building_name=_name(_pick(item, 'buildingName', 'propertyName', 'building')),
        email=_pick(item, 'email', 'emailAddress'),
        phones=_phones(item),
        occupancy_status=_pick(item, 'occupancyStatus', 'status'),
        move_in_date=parse_date(_pick(item, 'moveInDate')),
    )


def parse_announcements(payload: Any) -> List[Announcement]:
    announcements = []
    for item in _items(payload, 'announcements'):
        groups = _pick(item, 'distribution', 'distributionGroups', default=[])
        priority = str(_pick(item, 'priority', default='')).lower()
        announcements.append(Announcement(
            id=_str(_pick(item, 'id', 'announcementId')),
            title=_pick(item, 'title', 'subject', default='(untitled)'),
            body=_plain_text(_pick(item, 'body', 'message', 'text')),
            start_date=parse_date(_pick(item, 'startDate', 'postedDate', 'createdOn')),
            end_date=parse_date(_pick(item, 'endDate', 'expirationDate')),
            posted_by=_name(_pick(item, 'postedBy', 'author')),
            distribution=[_name(g) for g in groups if _name(g)] if isinstance(groups, list) else [str(groups)],
            is_urgent=bool(_pick(item, 'isUrgent', default=False)) or priority in ('high', 'urgent'),
        ))
    return announcements


def parse_events(payload: Any) -> List[Event]:
    events = []
    for item in _items(payload, 'events'):
        rsvp = _pick(item, 'rsvpStatus', 'rsvp')
        recurrence = _pick(item, 'recurrence', 'recurrenceDescription', 'recurrencePattern')
        events.append(Event(
            id=_str(_pick(item, 'id', 'eventId')),
            title=_pick(item, 'title', 'name', default='(untitled)'),
            description=_plain_text(_pick(item, 'description')),
            start=parse_date(_pick(item, 'start', 'startDate', 'startDateTime')),
            end=parse_date(_pick(item, 'end', 'endDate', 'endDateTime')),
            all_day=bool(_pick(item, 'allDay', 'isAllDay', default=False)),
            location=_name(_pick(item, 'location')),
            rsvp_status=_pick(rsvp, 'status') if isinstance(rsvp, dict) else _str(rsvp),
            is_recurring=bool(_pick(item, 'isRecurring', default=False)) or bool(recurrence),
            recurrence=_name(recurrence) if recurrence else None,
        ))
    return events


def parse_user(payload: Any) -> User:
    item = _unwrap(payload, 'user')
    return User(
        id=_str(_pick(item, 'id', 'userId')),
        username=_pick(item, 'userName', 'username', 'loginName'),
        first_name=_pick(item, 'firstName'),
        last_name=_pick(item, 'lastName'),
        email=_pick(item, 'email', 'emailAddress'),
        phones=_phones(item),
        created_on=parse_date(_pick(item, 'createdOn', 'createdDate')),
    )


# ================== HTML pages ==================

def parse_deliveries(document: Any) -> List[Delivery]:
    """Open deliveries from Deliveries/Deliveries.aspx"""
    deliveries = []
    for row, cells in _table_rows(document, ('type', 'location')):
        deliveries.append(Delivery(
            id=row.get('data-id') or row.get('data-delivery-id'),
            type=_cell_text(_column(cells, 'type')),
            location=_cell_text(_column(cells, 'location')),
            description=_cell_text(_column(cells, 'description', 'details')),
            received_at=parse_date(_cell_text(_column(cells, 'received', 'date'))),
            authorization=_cell_text(_column(cells, 'authoriz')),
        ))
    return deliveries


def parse_library_documents(document: Any, base_url: str) -> List[LibraryDocument]:
    """Documents from one of the library pages; download links made absolute"""
    documents = []
    for row, cells in _table_rows(document, ('title',)):
        title_cell = _column(cells, 'title')
        link = title_cell.find('a', href=True) if title_cell is not None else None
        url = urljoin(base_url, link['href']) if link is not None else None

        doc_id = row.get('data-id')
        if doc_id is None and url:
            query = parse_qs(urlparse(url).query)
            ids = query.get('id') or query.get('documentId') or query.get('DocumentId')
            doc_id = ids[0] if ids else None

        documents.append(LibraryDocument(
            id=doc_id,
            title=_cell_text(title_cell) or '(untitled)',
            category=_cell_text(_column(cells, 'category')),
            posted_on=parse_date(_cell_text(_column(cells, 'posted'))),
            revised_on=parse_date(_cell_text(_column(cells, 'revised'))),
            url=url,
        ))
    return documents


def parse_vendors(document: Any) -> List[Vendor]:
    """Preferred vendors, one card per vendor"""
    vendors = []
    for card in document.select('.vendor-card'):
        name = _cell_text(card.select_one('.vendor-name'))
        if not name:
            continue
        website = card.select_one('a.vendor-website[href]')
        email = card.select_one('a[href^="mailto:"]')
        vendors.append(Vendor(
            id=card.get('data-id'),
            name=name,
            category=_cell_text(card.select_one('.vendor-category')),
            phone=_cell_text(card.select_one('.vendor-phone')),
            email=email['href'][len('mailto:'):] if email is not None else None,
            website=website['href'] if website is not None else None,
            address=_cell_text(card.select_one('.vendor-address')),
            hours=_cell_text(card.select_one('.vendor-hours')),
            description=_cell_text(card.select_one('.vendor-description')),
        ))
    return vendors
