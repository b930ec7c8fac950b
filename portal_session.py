"""
Authenticated session for the BuildingLink tenant portal

Owns the cookie jar and the login state machine for one client:

    Unauthenticated --login()--> Authenticating(handshake) --ok--> Authenticated(token)
          ^                              |
          +------------ failure ---------+

Concurrent callers that need a login while a handshake is running await
that same handshake instead of starting another one. Every request made
through fetch() is retried at most once after re-authenticating.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Union
from urllib.parse import urljoin, urlparse

import aiohttp
from aiohttp import ClientTimeout, TCPConnector
from bs4 import BeautifulSoup
from multidict import CIMultiDict

from cookie_jar import PortalCookieJar
from portal_config import Config, Credentials
from portal_errors import (
    CredentialsRejectedError,
    LoginFormParseError,
    NetworkError,
    SessionExpiredError,
    UnexpectedResponseError,
)

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml')

DEFAULT_HEADERS = {
    'User-Agent': Config.USER_AGENT,
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
}


# ================== Session state ==================

@dataclass(frozen=True)
class Unauthenticated:
    pass


@dataclass(frozen=True)
class Authenticating:
    handshake: "asyncio.Future[Optional[str]]"


@dataclass(frozen=True)
class Authenticated:
    token: Optional[str] = None


SessionState = Union[Unauthenticated, Authenticating, Authenticated]


# ================== Responses ==================

@dataclass
class PortalResponse:
    """A fully-read response; the connection is already released.

    url is the final URL after redirects; history lists the URLs that
    redirected to it, in order.
    """
    status: int
    headers: CIMultiDict
    body: bytes
    url: str
    encoding: Optional[str] = None
    history: Tuple[str, ...] = ()

    @property
    def text(self) -> str:
        return self.body.decode(self.encoding or 'utf-8', errors='replace')

    @property
    def content_type(self) -> str:
        return self.headers.get('Content-Type', '').split(';')[0].strip().lower()

    @property
    def is_html(self) -> bool:
        return self.content_type in HTML_CONTENT_TYPES

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except json.JSONDecodeError as e:
            raise UnexpectedResponseError(
                f"Expected JSON from {self.url}, got {self.content_type or 'no content type'}",
                status=self.status,
                url=self.url,
            ) from e


@dataclass
class PortalPage:
    """A portal response plus its parsed document (HTML only)"""
    response: PortalResponse
    document: Optional[Any] = None


def parse_html(text: str) -> BeautifulSoup:
    return BeautifulSoup(text, 'lxml')


# ================== Session ==================

class PortalSession:
    """Cookie-authenticated access to the tenant portal.

    Args:
        credentials: Username/password (and optional API key) used to log in.
        tenant_base_url: Base that relative page paths are resolved against.
        login_url: Login page; landing back here means the session is gone.
        document_parser: Turns HTML text into a queryable document.
    """

    def __init__(
        self,
        credentials: Credentials,
        tenant_base_url: str = Config.TENANT_BASE_URL,
        login_url: str = Config.LOGIN_URL,
        document_parser: Callable[[str], Any] = parse_html,
    ):
        self._credentials = credentials
        self.tenant_base_url = tenant_base_url
        self.login_url = login_url
        self._document_parser = document_parser
        self._jar = PortalCookieJar()
        self._state: SessionState = Unauthenticated()
        self._http: Optional[aiohttp.ClientSession] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return isinstance(self._state, Authenticated)

    @property
    def token(self) -> Optional[str]:
        return self._state.token if isinstance(self._state, Authenticated) else None

    @property
    def cookies(self) -> PortalCookieJar:
        return self._jar

    async def _get_http(self) -> aiohttp.ClientSession:
        """Get or create the underlying HTTP session"""
        if self._http is None or self._http.closed:
            connector = TCPConnector(ssl=Config.SSL_VERIFY)
            timeout = ClientTimeout(total=Config.REQUEST_TIMEOUT)
            self._http = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                cookie_jar=self._jar,
                headers=DEFAULT_HEADERS,
            )
            logger.debug("Created portal HTTP session")
        return self._http

    async def close(self):
        """Close the HTTP session; cookies and login state are kept"""
        if self._http is not None:
            await self._http.close()
            self._http = None

    async def __aenter__(self) -> "PortalSession":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ---------------- Login handshake ----------------

    async def login(self, force: bool = False) -> Optional[str]:
        """Make sure a session exists and return its bearer token, if any.

        No network traffic when already authenticated unless force is set.
        While a handshake is running, every caller (forced or not) awaits
        that handshake and gets its result or its exception.
        """
        state = self._state
        if isinstance(state, Authenticating):
            return await asyncio.shield(state.handshake)
        if isinstance(state, Authenticated) and not force:
            return state.token

        handshake = asyncio.ensure_future(self._run_handshake())
        self._state = Authenticating(handshake)
        return await asyncio.shield(handshake)

    async def _run_handshake(self) -> Optional[str]:
        logger.info(f"Logging in to BuildingLink as {self._credentials.masked_username}")
        try:
            token = await asyncio.wait_for(self._handshake(), timeout=Config.LOGIN_TIMEOUT)
        except asyncio.TimeoutError as e:
            self._state = Unauthenticated()
            raise NetworkError(f"Login timed out after {Config.LOGIN_TIMEOUT}s") from e
        except BaseException:
            self._state = Unauthenticated()
            raise

        self._state = Authenticated(token)
        logger.info(f"Login successful{' (bearer token issued)' if token else ''}")
        return token

    async def _handshake(self) -> Optional[str]:
        login_page = await self._send('GET', self.login_url)
        if login_page.status != 200:
            raise UnexpectedResponseError(
                f"Login page returned HTTP {login_page.status}",
                status=login_page.status,
                url=login_page.url,
            )

        form_fields, action = self._extract_login_form(parse_html(login_page.text), login_page.url)
        form_fields[Config.USERNAME_FIELD] = self._credentials.username
        form_fields[Config.PASSWORD_FIELD] = self._credentials.password.get_secret_value()

        origin = '{0.scheme}://{0.netloc}'.format(urlparse(login_page.url))
        result = await self._send(
            'POST',
            action,
            data=form_fields,
            headers={'Referer': login_page.url, 'Origin': origin},
        )
        result, token = await self._complete_form_post(result)

        if result.status in (401, 403) or self._is_login_page(result.url):
            message = self._rejection_message(result)
            logger.warning(f"Login rejected for {self._credentials.masked_username}: {message}")
            raise CredentialsRejectedError(message)

        if not 200 <= result.status < 300:
            raise UnexpectedResponseError(
                f"Login ended on HTTP {result.status} at {result.url}",
                status=result.status,
                url=result.url,
            )

        return token

    def _extract_login_form(self, soup: BeautifulSoup, page_url: str) -> Tuple[Dict[str, str], str]:
        """Hidden fields (anti-forgery token included) and the absolute form action"""
        token_input = soup.find('input', attrs={'name': Config.ANTIFORGERY_FIELD})
        if token_input is None or not token_input.get('value'):
            raise LoginFormParseError(
                f"Anti-forgery token '{Config.ANTIFORGERY_FIELD}' not found on {page_url}"
            )

        form = token_input.find_parent('form')
        if form is None:
            raise LoginFormParseError(f"Anti-forgery token on {page_url} is not inside a form")

        fields = {}
        for hidden in form.find_all('input', type='hidden'):
            if hidden.get('name'):
                fields[hidden['name']] = hidden.get('value', '')

        return fields, urljoin(page_url, form.get('action') or page_url)

    async def _complete_form_post(self, response: PortalResponse) -> Tuple[PortalResponse, Optional[str]]:
        """Submit OpenID Connect form_post pages until a normal page is reached"""
        token = None
        for _ in range(Config.MAX_REDIRECTS):
            if not response.is_html:
                break
            soup = parse_html(response.text)
            marker = soup.find('input', attrs={'name': re.compile(r'^(code|id_token)$')})
            form = marker.find_parent('form') if marker is not None else None
            if form is None:
                break

            fields = {
                field['name']: field.get('value', '')
                for field in form.find_all('input', attrs={'name': True})
            }
            token = fields.get('access_token') or token
            action = urljoin(response.url, form.get('action') or response.url)
            logger.debug(f"Submitting authorization response to {action}")
            response = await self._send('POST', action, data=fields)

        return response, token

    @staticmethod
    def _rejection_message(response: PortalResponse) -> str:
        if response.is_html:
            error = parse_html(response.text).select_one(
                '.validation-summary-errors, .field-validation-error, .alert-danger'
            )
            if error is not None and error.get_text(strip=True):
                return error.get_text(' ', strip=True)
        return "Invalid username or password"

    # ---------------- Authenticated fetch ----------------

    async def fetch(
        self,
        url: str,
        method: str = 'GET',
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> PortalResponse:
        """Issue a request with the session attached.

        Logs in first if needed. If the response shows the session has
        expired, logs in again and repeats the request exactly once. A
        forced login only happens while the session the request went out
        with is still current; if another caller has already replaced it,
        the request is repeated on that newer session.

        Raises:
            SessionExpiredError: The repeated request was also rejected.
            UnexpectedResponseError: A non-2xx response that is not an expiry.
            NetworkError: Transport failure; never retried here.
        """
        await self.login()
        state = self._state
        response = await self._send_authenticated(state, method, url, params, data, json, headers)

        if self._is_expired(response):
            if self._state is state:
                logger.info(f"Session expired ({method} {url}), re-authenticating")
                await self.login(force=True)
            else:
                # Another caller already replaced the session this request used
                logger.debug(f"Session renewed elsewhere, retrying {method} {url}")
                await self.login()
            response = await self._send_authenticated(self._state, method, url, params, data, json, headers)
            if self._is_expired(response):
                raise SessionExpiredError(
                    f"Session expired again immediately after re-authenticating ({method} {url})"
                )

        if not 200 <= response.status < 300:
            raise UnexpectedResponseError(
                f"{method} {url} returned HTTP {response.status}",
                status=response.status,
                url=response.url,
            )
        return response

    async def page(self, path: str) -> PortalPage:
        """Fetch a tenant portal page by path relative to the tenant base URL"""
        url = urljoin(self.tenant_base_url, path.lstrip('/'))
        response = await self.fetch(url)
        document = self._document_parser(response.text) if response.is_html else None
        return PortalPage(response=response, document=document)

    async def _send_authenticated(self, state, method, url, params, data, json, headers) -> PortalResponse:
        request_headers = dict(headers or {})
        token = state.token if isinstance(state, Authenticated) else None
        if token:
            request_headers.setdefault('Authorization', f"Bearer {token}")
        return await self._send(method, url, params=params, data=data, json=json, headers=request_headers)

    def _is_expired(self, response: PortalResponse) -> bool:
        return response.status == 401 or self._is_login_page(response.url)

    def _is_login_page(self, url: str) -> bool:
        target = urlparse(url)
        login = urlparse(self.login_url)
        return (
            target.netloc.lower() == login.netloc.lower()
            and target.path.rstrip('/').lower() == login.path.rstrip('/').lower()
        )

    # ---------------- Transport ----------------

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> PortalResponse:
        """Send one request and read it fully, following redirects.

        aiohttp follows the redirect chain, storing every hop's cookies in
        the jar and dropping Authorization when the chain changes origin.
        """
        http = await self._get_http()
        logger.debug(f"{method} {url}")
        try:
            async with http.request(
                method,
                url,
                params=params,
                data=data,
                json=json,
                headers=headers,
                max_redirects=Config.MAX_REDIRECTS,
            ) as response:
                body = await response.read()
                result = PortalResponse(
                    status=response.status,
                    headers=CIMultiDict(response.headers),
                    body=body,
                    url=str(response.url),
                    encoding=response.charset,
                    history=tuple(str(hop.url) for hop in response.history),
                )
        except aiohttp.TooManyRedirects as e:
            raise UnexpectedResponseError(
                f"Too many redirects (more than {Config.MAX_REDIRECTS}) starting at {url}",
                url=url,
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"{method} {url} failed: {str(e) or type(e).__name__}") from e

        if result.history:
            logger.debug(f"{method} {url} redirected {len(result.history)} time(s) to {result.url}")
        return result
