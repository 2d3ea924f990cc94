#!/usr/bin/env python3
"""
planner_datashapes.py - Centralized Data Shape Definitions

Enums and dataclasses shared by the AI request client and the realtime
collaboration session. Just definitions of what data looks like, plus the
wire (camelCase) serializers the browser client expects.

    from planner_datashapes import ChatMessage, GenerationConfig, AISuccess
"""

import json
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Deque, Dict, Iterator, List, Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


# =============================================================================
# AI REQUESTS
# =============================================================================

class MessageRole(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ErrorKind(Enum):
    """
    Classified failure kinds. Only RATE_LIMITED and TRANSIENT are retried.
    TRANSPORT_CLOSED is internal to the realtime session and never returned
    by the AI client.
    """
    NOT_INITIALIZED = "not_initialized"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNAUTHORIZED = "unauthorized"
    CONTENT_BLOCKED = "content_blocked"
    TRANSIENT = "transient"
    TRANSPORT_CLOSED = "transport_closed"


RETRYABLE_ERRORS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT})


@dataclass(frozen=True)
class ChatMessage:
    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(MessageRole.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(MessageRole.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(MessageRole.ASSISTANT, content)


@dataclass(frozen=True)
class GenerationConfig:
    """
    Sampling settings for one call. Unset fields fall back to the provider
    adapter's defaults; values are passed through without range checks.
    """
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None

    def merged_over(self, defaults: "GenerationConfig") -> "GenerationConfig":
        """Explicit fields here win; everything else comes from defaults."""
        overrides = {name: value for name, value in self.__dict__.items() if value is not None}
        return replace(defaults, **overrides)


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class AISuccess:
    payload: Any
    usage: Optional[TokenUsage] = None
    attempts: int = 1

    success = True

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": True, "data": self.payload}
        if self.usage is not None:
            result["usage"] = self.usage.to_dict()
        return result


@dataclass(frozen=True)
class AIFailure:
    error_kind: ErrorKind
    message: str
    attempts: int = 0

    success = False

    @property
    def retryable(self) -> bool:
        return self.error_kind in RETRYABLE_ERRORS

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message, "error_kind": self.error_kind.value}


ResponseEnvelope = Union[AISuccess, AIFailure]


# =============================================================================
# REALTIME SESSION
# =============================================================================

class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class CollaboratorRole(Enum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


class InviteStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    DECLINED = "declined"


class ActivityType(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    COMMENT = "comment"
    INVITE = "invite"
    ROLE_CHANGE = "role_change"
    LOGIN = "login"
    VIEW = "view"


class NotificationType(Enum):
    MENTION = "mention"
    COMMENT = "comment"
    UPDATE = "update"
    INVITE = "invite"


INVITE_LIFETIME = timedelta(days=7)
ACTIVITY_LOG_LIMIT = 50


@dataclass(frozen=True)
class Permissions:
    can_edit_budget: bool = False
    can_edit_checklist: bool = False
    can_edit_vision_board: bool = False
    can_edit_vendors: bool = False
    can_invite_others: bool = False
    can_manage_roles: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "canEditBudget": self.can_edit_budget,
            "canEditChecklist": self.can_edit_checklist,
            "canEditVisionBoard": self.can_edit_vision_board,
            "canEditVendors": self.can_edit_vendors,
            "canInviteOthers": self.can_invite_others,
            "canManageRoles": self.can_manage_roles,
        }


# Fixed role -> permissions table
ROLE_PERMISSIONS: Dict[CollaboratorRole, Permissions] = {
    CollaboratorRole.OWNER: Permissions(True, True, True, True, True, True),
    CollaboratorRole.EDITOR: Permissions(True, True, True, True, False, False),
    CollaboratorRole.VIEWER: Permissions(False, False, False, False, False, False),
}


@dataclass
class Collaborator:
    """
    A project member. Permissions are derived from role on every read, so a
    role change can never leave a stale permission record behind.
    """
    id: str
    email: str
    name: str
    role: CollaboratorRole
    invited_at: datetime = field(default_factory=utc_now)
    last_active: datetime = field(default_factory=utc_now)
    is_online: bool = False
    accepted_at: Optional[datetime] = None
    avatar: Optional[str] = None

    @property
    def permissions(self) -> Permissions:
        return ROLE_PERMISSIONS[self.role]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "avatar": self.avatar,
            "invitedAt": iso(self.invited_at),
            "acceptedAt": iso(self.accepted_at),
            "lastActive": iso(self.last_active),
            "isOnline": self.is_online,
            "permissions": self.permissions.to_dict(),
        }


@dataclass
class CollaborationInvite:
    id: str
    email: str
    role: CollaboratorRole
    invited_by: str
    invited_at: datetime
    expires_at: datetime
    token: str
    status: InviteStatus = InviteStatus.PENDING

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "invitedBy": self.invited_by,
            "invitedAt": iso(self.invited_at),
            "expiresAt": iso(self.expires_at),
            "token": self.token,
            "status": self.status.value,
        }


@dataclass
class Reaction:
    emoji: str
    users: List[str] = field(default_factory=list)


@dataclass
class Comment:
    id: str
    content: str
    author_id: str
    author_name: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    is_edited: bool = False
    mentions: List[str] = field(default_factory=list)
    replies: List["Comment"] = field(default_factory=list)
    reactions: List[Reaction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "author": {"id": self.author_id, "name": self.author_name},
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
            "isEdited": self.is_edited,
            "mentions": list(self.mentions),
            "replies": [reply.to_dict() for reply in self.replies],
            "reactions": [{"emoji": r.emoji, "users": list(r.users)} for r in self.reactions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Comment":
        author = data.get("author") or {}
        created = data.get("createdAt")
        updated = data.get("updatedAt")
        return cls(
            id=str(data.get("id", "")),
            content=data.get("content", ""),
            author_id=author.get("id", ""),
            author_name=author.get("name", ""),
            created_at=datetime.fromisoformat(created) if created else utc_now(),
            updated_at=datetime.fromisoformat(updated) if updated else None,
            is_edited=bool(data.get("isEdited", False)),
            mentions=list(data.get("mentions") or []),
            replies=[cls.from_dict(r) for r in data.get("replies") or []],
            reactions=[Reaction(r.get("emoji", ""), list(r.get("users") or []))
                       for r in data.get("reactions") or []],
        )


@dataclass
class CommentThread:
    """Comments for one (item_type, item_id); append-only from the client side."""
    item_type: str
    item_id: str
    comments: List[Comment] = field(default_factory=list)
    is_resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    participants: List[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return thread_id_for(self.item_type, self.item_id)


def thread_id_for(item_type: str, item_id: str) -> str:
    return f"{item_type}-{item_id}"


@dataclass
class ActivityLogEntry:
    id: str
    type: ActivityType
    user_id: str
    user_name: str
    description: str
    timestamp: datetime = field(default_factory=utc_now)
    item_type: Optional[str] = None
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ActivityLog:
    """Newest-first ring buffer; entries past the limit fall off the end."""

    def __init__(self, limit: int = ACTIVITY_LOG_LIMIT):
        self._entries: Deque[ActivityLogEntry] = deque(maxlen=limit)

    def append(self, entry: ActivityLogEntry) -> None:
        self._entries.appendleft(entry)

    @property
    def limit(self) -> int:
        return self._entries.maxlen

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ActivityLogEntry]:
        return iter(self._entries)

    def entries(self) -> List[ActivityLogEntry]:
        return list(self._entries)


@dataclass
class VersionChange:
    field: str
    old_value: Any = None
    new_value: Any = None


@dataclass
class VersionHistory:
    id: str
    item_type: str
    item_id: str
    version: int
    changes: List[VersionChange]
    changed_by: str
    changed_at: datetime
    description: str


@dataclass
class Cursor:
    x: float
    y: float
    item_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"x": self.x, "y": self.y}
        if self.item_id is not None:
            data["itemId"] = self.item_id
        return data


@dataclass
class ActiveUser:
    user_id: str
    user_name: str
    current_page: str = "dashboard"
    last_seen: datetime = field(default_factory=utc_now)
    is_typing: bool = False
    cursor: Optional[Cursor] = None
    avatar: Optional[str] = None


@dataclass
class Notification:
    id: str
    type: NotificationType
    message: str
    user_id: str
    is_read: bool = False
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class RealTimeUpdate:
    """JSON envelope exchanged over the collaboration socket."""
    type: str
    user_id: str
    user_name: str
    data: Any
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "userId": self.user_id,
            "userName": self.user_name,
            "data": self.data,
            "timestamp": iso(self.timestamp),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RealTimeUpdate":
        ts = raw.get("timestamp")
        try:
            timestamp = datetime.fromisoformat(ts) if isinstance(ts, str) else utc_now()
        except ValueError:
            timestamp = utc_now()
        return cls(
            type=str(raw["type"]),
            user_id=str(raw.get("userId", "")),
            user_name=str(raw.get("userName", "")),
            data=raw.get("data"),
            timestamp=timestamp,
        )
