"""
Configuration for the BuildingLink portal client

Portal URLs are fixed; timeouts and transport options can be overridden
with environment variables. Credentials always come from the environment.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from portal_errors import ConfigurationError

# Config below is read at import time; pick up a .env file first
load_dotenv()


class Config:
    """Configuration with defaults (can be overridden by environment variables)"""
    # Portal endpoints
    TENANT_BASE_URL = "https://www.buildinglink.com/V2/Tenant/"
    LOGIN_URL = "https://auth.buildinglink.com/Account/Login"
    API_BASE_URL = "https://api.buildinglink.com/"

    # Login form field names
    USERNAME_FIELD = "Username"
    PASSWORD_FIELD = "Password"
    ANTIFORGERY_FIELD = "__RequestVerificationToken"

    # Header carrying the optional API key on the user endpoint
    API_KEY_HEADER = "Ocp-Apim-Subscription-Key"

    # Reliability
    REQUEST_TIMEOUT = int(os.getenv('BUILDINGLINK_REQUEST_TIMEOUT', '30'))
    LOGIN_TIMEOUT = int(os.getenv('BUILDINGLINK_LOGIN_TIMEOUT', '60'))
    MAX_REDIRECTS = int(os.getenv('BUILDINGLINK_MAX_REDIRECTS', '10'))

    # Security - SSL verification is on unless explicitly disabled
    SSL_VERIFY = os.getenv('BUILDINGLINK_SSL_VERIFY', 'true').lower() == 'true'

    USER_AGENT = os.getenv(
        'BUILDINGLINK_USER_AGENT',
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) '
        'Chrome/121.0.0.0 Safari/537.36'
    )


class Credentials(BaseModel):
    """Portal credentials, fixed for the lifetime of a client"""
    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1, description="BuildingLink login username")
    password: SecretStr = Field(description="BuildingLink login password")
    api_key: Optional[SecretStr] = Field(default=None, description="API key for the user endpoint")

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("Password must not be empty")
        return v

    @property
    def masked_username(self) -> str:
        return f"{self.username[:3]}***" if len(self.username) > 3 else "***"


def load_credentials() -> Credentials:
    """Read credentials from BUILDINGLINK_* environment variables"""
    username = os.getenv('BUILDINGLINK_USERNAME')
    password = os.getenv('BUILDINGLINK_PASSWORD')

    if not username or not password:
        raise ConfigurationError(
            "BUILDINGLINK_USERNAME and BUILDINGLINK_PASSWORD environment variables are required"
        )

    return Credentials(
        username=username,
        password=password,
        api_key=os.getenv('BUILDINGLINK_API_KEY') or None,
    )
