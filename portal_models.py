"""
Records returned by the BuildingLink client
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Building(BaseModel):
    """A property the user is authorized for"""
    id: Optional[str] = None
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    management_company: Optional[str] = None
    phone: Optional[str] = None


class Occupant(BaseModel):
    """The logged-in occupant and their unit"""
    id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    unit: Optional[str] = None
    building_name: Optional[str] = None
    email: Optional[str] = None
    phones: List[str] = Field(default_factory=list)
    occupancy_status: Optional[str] = None
    move_in_date: Optional[datetime] = None


class Announcement(BaseModel):
    id: Optional[str] = None
    title: str
    body: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    posted_by: Optional[str] = None
    distribution: List[str] = Field(default_factory=list, description="Groups the announcement was sent to")
    is_urgent: bool = False


class Delivery(BaseModel):
    """An open delivery waiting at the front desk"""
    id: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    received_at: Optional[datetime] = None
    authorization: Optional[str] = Field(default=None, description="Who may pick the delivery up")


class Event(BaseModel):
    id: Optional[str] = None
    title: str
    description: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    all_day: bool = False
    location: Optional[str] = None
    rsvp_status: Optional[str] = None
    is_recurring: bool = False
    recurrence: Optional[str] = None


class LibraryDocument(BaseModel):
    id: Optional[str] = None
    title: str
    category: Optional[str] = None
    posted_on: Optional[datetime] = None
    revised_on: Optional[datetime] = None
    url: Optional[str] = None
    file_bytes: Optional[bytes] = Field(default=None, exclude=True, repr=False)


class Library(BaseModel):
    apt_documents: List[LibraryDocument] = Field(default_factory=list)
    building_documents: List[LibraryDocument] = Field(default_factory=list)


class Vendor(BaseModel):
    """A preferred vendor listed by building management"""
    id: Optional[str] = None
    name: str
    category: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    hours: Optional[str] = None
    description: Optional[str] = None


class User(BaseModel):
    id: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phones: List[str] = Field(default_factory=list)
    created_on: Optional[datetime] = None
