"""
Per-client cookie storage for the BuildingLink portal

An aiohttp CookieJar (domain/path/secure matching, Max-Age and Expires
handling, expiry eviction) that additionally keys cookies by name: a
newly set cookie replaces any stored cookie of the same name.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from http.cookies import Morsel
from typing import Dict, Mapping, Optional, Union

import aiohttp
from aiohttp.typedefs import LooseCookies
from dateutil import parser as date_parser
from yarl import URL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cookie:
    """Read-only view of a stored cookie"""
    name: str
    value: str
    domain: str
    path: str = "/"
    expires: Optional[datetime] = None
    secure: bool = False

    @classmethod
    def from_morsel(cls, morsel: Morsel, expires: Optional[datetime] = None) -> "Cookie":
        return cls(
            name=morsel.key,
            value=morsel.value,
            domain=morsel["domain"],
            path=morsel["path"] or "/",
            expires=expires,
            secure=bool(morsel["secure"]),
        )


def _expiry_of(morsel: Morsel) -> Optional[datetime]:
    """Absolute expiry of a Set-Cookie morsel; Max-Age wins over Expires"""
    if morsel["max-age"]:
        try:
            return datetime.now(timezone.utc) + timedelta(seconds=int(morsel["max-age"]))
        except (ValueError, OverflowError):
            return None
    if morsel["expires"]:
        try:
            expires = date_parser.parse(morsel["expires"])
        except (ValueError, OverflowError):
            return None
        return expires if expires.tzinfo else expires.replace(tzinfo=timezone.utc)
    return None


class PortalCookieJar(aiohttp.CookieJar):
    """aiohttp cookie jar with last-write-wins by cookie name.

    Used directly as the ClientSession jar, so cookies set on every
    redirect hop are captured and matching cookies are attached to every
    request. Must be created inside a running event loop.
    """

    def __init__(self):
        # unsafe: the portal is also reachable by IP in test setups
        super().__init__(unsafe=True)
        self._expiry_by_name: Dict[str, datetime] = {}

    def update_cookies(self, cookies: LooseCookies, response_url: URL = URL()) -> None:
        items = list(cookies.items() if isinstance(cookies, Mapping) else cookies)
        names = {name for name, _ in items}
        if names:
            self.clear(lambda morsel: morsel.key in names)
            logger.debug(f"Cookies from {response_url.host or 'caller'}: {', '.join(sorted(names))}")

        for name, value in items:
            self._expiry_by_name.pop(name, None)
            expires = _expiry_of(value) if isinstance(value, Morsel) else None
            if expires is not None:
                self._expiry_by_name[name] = expires
        super().update_cookies(items, response_url)

    def header_for(self, url: Union[str, URL]) -> Optional[str]:
        """The Cookie header a request to url would carry, or None"""
        matched = self.filter_cookies(URL(str(url)))
        pairs = [f"{name}={morsel.value}" for name, morsel in matched.items()]
        return "; ".join(pairs) if pairs else None

    def get(self, name: str) -> Optional[Cookie]:
        for morsel in self:
            if morsel.key == name:
                return Cookie.from_morsel(morsel, self._expiry_by_name.get(name))
        return None

    def __contains__(self, name: object) -> bool:
        return any(morsel.key == name for morsel in self)
