"""
Document Schemas for the Collabolab backend

Each Pydantic model describes a MongoDB collection. The collection name is
the lowercased, underscored class name, e.g. ChatMessage -> "chat_message".
Cross-references between documents are stored as ObjectIds and rendered as
strings on the wire.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

ONE_TIME = "one time"
COMPLETE = "Complete"


# Identity
class Account(BaseModel):
    email: EmailStr
    password_hash: str = Field(..., description="SHA-256 of the password, never the password itself")
    display_name: str
    disabled: bool = False


class Session(BaseModel):
    token: str
    user_id: str
    expires_at: datetime


# Users and projects
class User(BaseModel):
    name: str
    email: EmailStr
    phone: str = ""
    projects: List[str] = Field(default_factory=list, description="Ids of projects listing this user in member_ids")
    fcm_token: str = Field("", description="Device push token, empty when no device is registered")


class UserPublic(BaseModel):
    id: str
    name: str
    email: EmailStr


class Project(BaseModel):
    name: str
    description: Optional[str] = None
    owner_id: str = Field(..., description="User id of project owner, always also a member")
    member_ids: List[str] = Field(default_factory=list, description="Ids of users listing this project in projects")


class Permission(BaseModel):
    """Capabilities of one member inside one project."""

    create_task: bool = False
    edit_task: bool = False
    delete_task: bool = False
    review_task: bool = False
    manage_permissions: bool = False
    kick_member: bool = False
    invite: bool = False

    @classmethod
    def full(cls) -> "Permission":
        return cls(**{flag: True for flag in cls.model_fields})


PermissionFlag = Literal[
    "create_task", "edit_task", "delete_task", "review_task",
    "manage_permissions", "kick_member", "invite",
]


class Invite(BaseModel):
    user_id: str
    project_id: str
    name: str = Field(..., description="Project name when the invite was sent")
    description: Optional[str] = None


# Tasks
class Task(BaseModel):
    project_id: str
    name: str
    status: str = "To do"
    assigned_to: Optional[str] = Field(None, description="Member id, or None when nobody owns the task")


# Chat
class ChatMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str
    text: str
    from_: str = Field(..., alias="from", description='Display name of the author, or "System"')
    user_id: Optional[str] = None
    timestamp: datetime


# Notifications
class UserUpdate(BaseModel):
    user_id: str
    view_type: str = ONE_TIME
    title: str
    description: str
    read: bool = False
