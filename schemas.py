"""
Database Schemas for ResolveNow

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name.
References to other documents are stored as id strings.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

PENDING = "Pending"
ASSIGNED = "Assigned"
RESOLVED = "Resolved"

CUSTOMER = "Customer"
AGENT = "Agent"
ADMIN = "Admin"

UserType = Literal["Customer", "Agent", "Admin"]


class Attachment(BaseModel):
    path: str = Field(..., description="Locator returned by the attachment store")
    name: Optional[str] = Field(None, description="Display name")
    original_name: Optional[str] = Field(None, description="Filename as uploaded")


class User(BaseModel):
    name: str = Field(..., description="Full name, also used as display name in messages")
    email: str = Field(..., description="Unique login email")
    password: str = Field(..., description="bcrypt hash, never the plain password")
    phone: str = Field(..., description="Contact phone number")
    user_type: UserType = Field(CUSTOMER, description="Customer, Agent or Admin")


class Complaint(BaseModel):
    user_id: str = Field(..., description="Reference to the submitting user")
    name: str = Field(..., description="Contact name")
    address: str
    city: str
    state: str
    pincode: str
    comment: str = Field(..., description="Description of the problem")
    attachments: List[Attachment] = Field(default_factory=list)
    # Open-ended; Pending, Assigned and Resolved are the conventional values.
    status: str = Field(PENDING, description="Lifecycle status")


class Assigned(BaseModel):
    agent_id: str = Field(..., description="Reference to the agent")
    complaint_id: str = Field(..., description="Reference to the complaint, unique per collection")
    agent_name: str = Field(..., description="Agent display name copied at assignment time")
    status: str = Field(ASSIGNED)
    assigned_at: Optional[datetime] = None


class Message(BaseModel):
    complaint_id: str = Field(..., description="Reference to the complaint")
    name: str = Field(..., description="Sender display name, not a user reference")
    message: str = Field(..., description="Message body")
    attachments: List[Attachment] = Field(default_factory=list)
    read: bool = Field(False, description="Flips to true once, never back")
    sent_at: Optional[datetime] = None


class Feedback(BaseModel):
    user_id: str = Field(..., description="Reference to the submitting user")
    complaint_id: str = Field(..., description="Reference to the complaint")
    agent_id: Optional[str] = Field(None, description="Agent assigned when the feedback was left")
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
