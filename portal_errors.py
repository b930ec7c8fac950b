"""
Exceptions raised by the BuildingLink portal client
"""

from typing import Optional


class BuildingLinkError(Exception):
    """Base exception for BuildingLink client errors"""
    pass


class ConfigurationError(BuildingLinkError):
    """Required configuration (credentials, API key) is missing"""
    pass


class LoginFormParseError(BuildingLinkError):
    """The login page no longer has the form or anti-forgery token we expect"""
    pass


class CredentialsRejectedError(BuildingLinkError):
    """The portal refused the username/password"""
    pass


class SessionExpiredError(BuildingLinkError):
    """The session expired again right after re-authenticating"""
    pass


class NetworkError(BuildingLinkError):
    """Transport-level failure (connection, DNS, TLS, timeout)"""
    pass


class UnexpectedResponseError(BuildingLinkError):
    """A response that is neither clearly authenticated nor clearly expired"""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url
