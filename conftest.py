"""
Shared fixtures: an in-process fake BuildingLink portal

The fake speaks just enough of the real site for the client: an ASP.NET
login form with an anti-forgery token, a cookie session, tenant pages that
bounce to the login page without a valid session, and a few JSON endpoints.
"""

import asyncio
from typing import Dict, List, Optional, Set

import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from buildinglink import BuildingLink
from portal_config import Credentials
from portal_session import PortalSession

USERNAME = "resident@example.com"
PASSWORD = "correct-horse"
API_KEY = "key-123"
ANTIFORGERY_TOKEN = "CfDJ8-antiforgery"
ACCESS_TOKEN = "tok-123"
SESSION_COOKIE = "bl_session"

HOME_PATH = "/V2/Tenant/Home/Default.aspx"

LOGIN_FORM = """
<html><head><title>Log in</title></head><body>
<form method="post" action="/Account/Login?ReturnUrl=%2FV2%2FTenant%2FHome%2FDefault.aspx">
  <input type="hidden" name="ReturnUrl" value="/V2/Tenant/Home/Default.aspx">
  <input name="Username" type="text">
  <input name="Password" type="password">
  {token}
  <button type="submit">Log in</button>
</form>
{error}
</body></html>
"""

FORM_POST = """
<html><body onload="document.forms[0].submit()">
<form method="post" action="/signin-oidc">
  <input type="hidden" name="code" value="auth-code">
  <input type="hidden" name="access_token" value="{token}">
  <input type="hidden" name="state" value="xyz">
</form>
</body></html>
"""

HOME_HTML = "<html><head><title>Home</title></head><body><h1>Welcome</h1></body></html>"

DELIVERIES_HTML = """
<html><body>
<table id="ctl00_gvDeliveries">
  <tr><th>Type</th><th>Location</th><th>Description</th><th>Received</th><th>Authorization</th></tr>
  <tr data-id="d1"><td>Package</td><td>Front Desk</td><td>Amazon box</td>
      <td>01/15/2025 10:30 AM</td><td>Resident only</td></tr>
  <tr data-id="d2"><td>Dry Cleaning</td><td>Package Room</td><td>2 shirts</td>
      <td>01/16/2025 09:00 AM</td><td>Anyone in unit</td></tr>
</table>
</body></html>
"""

APT_DOCUMENTS_HTML = """
<html><body>
<table>
  <thead><tr><th>Title</th><th>Category</th><th>Posted</th><th>Revised</th></tr></thead>
  <tbody>
    <tr><td><a href="../Library/Download.ashx?id=11">Lease 2025</a></td><td>Lease</td>
        <td>2025-01-02</td><td></td></tr>
  </tbody>
</table>
</body></html>
"""

BUILDING_DOCUMENTS_HTML = """
<html><body>
<table>
  <tr><th>Title</th><th>Category</th><th>Posted</th><th>Revised</th></tr>
  <tr><td><a href="Download.ashx?id=21">House Rules</a></td><td>Rules</td>
      <td>2024-06-01</td><td>2024-09-15</td></tr>
  <tr><td><a href="Download.ashx?id=22">Move-in Guide</a></td><td>Guides</td>
      <td>2024-03-10</td><td></td></tr>
</table>
</body></html>
"""

VENDORS_HTML = """
<html><body>
<div class="vendor-card" data-id="v1">
  <h3 class="vendor-name">Sparkle Cleaning</h3>
  <span class="vendor-category">Cleaning</span>
  <span class="vendor-phone">555-0101</span>
  <a href="mailto:hello@sparkle.example">Email</a>
  <a class="vendor-website" href="https://sparkle.example">Website</a>
  <p class="vendor-address">10 Side St, Springfield</p>
  <p class="vendor-hours">Mon-Fri 9-5</p>
</div>
<div class="vendor-card" data-id="v2">
  <h3 class="vendor-name">Quick Movers</h3>
  <span class="vendor-category">Moving</span>
</div>
</body></html>
"""


class FakePortal:
    """aiohttp application imitating the BuildingLink portal"""

    def __init__(self):
        self.requests = 0
        self.login_page_gets = 0
        self.credential_posts = 0
        self.tenant_gets: List[str] = []
        self.api_requests: List[web.Request] = []
        self.sessions: Set[str] = set()

        # Behaviour switches
        self.omit_antiforgery = False
        self.issue_token = False
        self.login_delay = 0.0
        self.reject_sessions_for: Set[str] = set()
        self.expire_cookie_on: Set[str] = set()
        self.session_max_age: Optional[int] = None
        self.page_delays: Dict[str, float] = {}
        self.offsite_url = ""

        self.base_url = ""

        @web.middleware
        async def count_requests(request, handler):
            self.requests += 1
            return await handler(request)

        self.app = web.Application(middlewares=[count_requests])
        self.app.router.add_get('/Account/Login', self.login_page)
        self.app.router.add_post('/Account/Login', self.submit_login)
        self.app.router.add_post('/signin-oidc', self.signin_callback)
        self.app.router.add_get('/V2/Tenant/{tail:.*}', self.tenant_page)
        self.app.router.add_get('/api/{tail:.*}', self.api)

    def url(self, path: str) -> str:
        return self.base_url + path.lstrip('/')

    def _has_session(self, request: web.Request) -> bool:
        return request.cookies.get(SESSION_COOKIE) in self.sessions

    def _start_session(self, response: web.Response) -> None:
        session_id = f"s{len(self.sessions) + 1}"
        self.sessions.add(session_id)
        response.set_cookie(SESSION_COOKIE, session_id, path='/', httponly=True, max_age=self.session_max_age)

    def _redirect(self, location: str) -> web.Response:
        return web.Response(status=302, headers={'Location': location})

    # ---------------- Login ----------------

    async def login_page(self, request: web.Request) -> web.Response:
        self.login_page_gets += 1
        token = '' if self.omit_antiforgery else (
            f'<input type="hidden" name="__RequestVerificationToken" value="{ANTIFORGERY_TOKEN}">'
        )
        response = web.Response(text=LOGIN_FORM.format(token=token, error=''), content_type='text/html')
        response.set_cookie('.AspNetCore.Antiforgery', 'af-cookie', path='/')
        return response

    async def submit_login(self, request: web.Request) -> web.Response:
        self.credential_posts += 1
        if self.login_delay:
            await asyncio.sleep(self.login_delay)

        form = await request.post()
        if form.get('__RequestVerificationToken') != ANTIFORGERY_TOKEN or \
                '.AspNetCore.Antiforgery' not in request.cookies:
            return web.Response(status=400, text="Bad anti-forgery token")

        if form.get('Username') != USERNAME or form.get('Password') != PASSWORD:
            error = '<div class="validation-summary-errors"><ul><li>Invalid login attempt.</li></ul></div>'
            token = f'<input type="hidden" name="__RequestVerificationToken" value="{ANTIFORGERY_TOKEN}">'
            return web.Response(text=LOGIN_FORM.format(token=token, error=error), content_type='text/html')

        if self.issue_token:
            return web.Response(text=FORM_POST.format(token=ACCESS_TOKEN), content_type='text/html')

        response = self._redirect(form.get('ReturnUrl') or HOME_PATH)
        self._start_session(response)
        return response

    async def signin_callback(self, request: web.Request) -> web.Response:
        form = await request.post()
        if form.get('code') != 'auth-code':
            return web.Response(status=400, text="Bad authorization code")
        response = self._redirect(HOME_PATH)
        self._start_session(response)
        return response

    # ---------------- Tenant pages ----------------

    async def tenant_page(self, request: web.Request) -> web.Response:
        path = request.path
        self.tenant_gets.append(path)
        if path in self.page_delays:
            await asyncio.sleep(self.page_delays[path])

        if not self._has_session(request) or path in self.reject_sessions_for:
            return self._redirect(f"/Account/Login?ReturnUrl={path}")

        if path.endswith('/Offsite.aspx'):
            return self._redirect(self.offsite_url)
        if path.endswith('/Loop.aspx'):
            return self._redirect(path)
        if path.endswith('/Broken.aspx'):
            return web.Response(status=500, text="Server Error")
        if path.endswith('/Download.ashx'):
            return web.Response(body=b'%PDF-1.4 ' + request.query['id'].encode(), content_type='application/pdf')

        pages = {
            '/V2/Tenant/Deliveries/Deliveries.aspx': DELIVERIES_HTML,
            '/V2/Tenant/Library/ApartmentDocuments.aspx': APT_DOCUMENTS_HTML,
            '/V2/Tenant/Library/BuildingDocuments.aspx': BUILDING_DOCUMENTS_HTML,
            '/V2/Tenant/Vendors/PreferredVendors.aspx': VENDORS_HTML,
        }
        response = web.Response(text=pages.get(path, HOME_HTML), content_type='text/html')
        if path in self.expire_cookie_on:
            response.del_cookie(SESSION_COOKIE, path='/')
        return response

    # ---------------- JSON API ----------------

    async def api(self, request: web.Request) -> web.Response:
        self.api_requests.append(request)
        if not self._has_session(request):
            return web.json_response({'message': 'Unauthorized'}, status=401)

        endpoint = request.match_info['tail']
        if endpoint == 'Tenant/v1/properties':
            return web.json_response([{
                'id': 101,
                'name': 'The Towers',
                'address': {'street': '1 Main St', 'city': 'Springfield', 'state': 'IL',
                            'zip': '62701', 'latitude': 39.8, 'longitude': -89.6},
                'managementCompany': {'name': 'Acme Management'},
            }])
        if endpoint == 'Tenant/v1/occupant':
            return web.json_response({'occupant': {
                'id': 7, 'firstName': 'Pat', 'lastName': 'Lee', 'unitNumber': '12B',
                'email': 'pat@example.com', 'mobilePhone': '555-0100', 'occupancyStatus': 'Current',
            }})
        if endpoint == 'Tenant/v1/announcements':
            return web.json_response({'announcements': [{
                'id': 1, 'title': 'Water shutoff', 'body': '<p>Water off <b>Tuesday</b></p>',
                'startDate': '/Date(1735689600000)/', 'priority': 'High',
                'distributionGroups': [{'name': 'All residents'}],
            }]})
        if endpoint == 'Tenant/v1/calendar/events':
            return web.json_response([{
                'id': 5, 'title': 'Rooftop BBQ',
                'startDate': '2025-01-10T18:00:00', 'endDate': '2025-01-10T21:00:00',
                'rsvp': {'status': 'Going'}, 'recurrence': 'Weekly',
            }])
        if endpoint == 'Users/v1/me':
            if request.headers.get('Ocp-Apim-Subscription-Key') != API_KEY:
                return web.json_response({'message': 'Missing subscription key'}, status=403)
            return web.json_response({'user': {
                'id': 'u1', 'userName': USERNAME, 'firstName': 'Pat', 'lastName': 'Lee',
                'email': 'pat@example.com', 'phones': [{'number': '555-0100'}],
            }})
        return web.json_response({'message': 'Not found'}, status=404)


def make_credentials(password: str = PASSWORD, api_key: Optional[str] = None) -> Credentials:
    return Credentials(username=USERNAME, password=password, api_key=api_key)


@pytest_asyncio.fixture
async def portal():
    fake = FakePortal()
    server = TestServer(fake.app)
    await server.start_server()
    fake.base_url = str(server.make_url('/'))
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def portal_session(portal):
    session = PortalSession(
        make_credentials(),
        tenant_base_url=portal.url('V2/Tenant/'),
        login_url=portal.url('Account/Login'),
    )
    yield session
    await session.close()


@pytest_asyncio.fixture
async def client(portal):
    bl = BuildingLink(
        make_credentials(api_key=API_KEY),
        tenant_base_url=portal.url('V2/Tenant/'),
        login_url=portal.url('Account/Login'),
        api_base_url=portal.url('api/'),
    )
    yield bl
    await bl.close()
