#!/usr/bin/env python3
"""
Realtime Session - Reconnecting WebSocket session for project collaboration

One manager owns at most one live socket to
    ws://<host>/collaboration?userId=<id>&projectId=<id>
and republishes what happens on it through a SessionEventBus.

Connection lifecycle:
    connect() -> CONNECTING -> open -> CONNECTED
    close/open failure -> DISCONNECTED -> reconnect after base_delay * n (n <= 5)
    disconnect() -> DISCONNECTED, pending reconnect cancelled, no auto-reconnect

If the transport cannot even be constructed (bad URI, factory raises) the
manager goes degraded: it synthesizes a 'connected' event after a short delay
so the UI keeps working, and outbound updates are dropped.

Must be driven from a running asyncio event loop.
"""

import asyncio
import functools
import json
import logging
import secrets
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.uri import parse_uri

from collab_permissions import INVITABLE_ROLES, has_permission, parse_role
from planner_config import PlannerConfig
from planner_datashapes import (
    INVITE_LIFETIME, ActivityLogEntry, ActivityType, CollaborationInvite, Collaborator,
    CollaboratorRole, Comment, ConnectionState, Cursor, InviteStatus, Notification,
    NotificationType, RealTimeUpdate, VersionChange, VersionHistory, utc_now
)
from planner_errors import ErrorCategory, ErrorHandler, ErrorSeverity, report_error
from session_events import EventHandler, EventName, SessionEvent, SessionEventBus, SessionEventType, event_key

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], Awaitable[Any]]


def open_websocket(url: str, open_timeout: float = 10.0):
    """
    Default transport factory. URI problems raise here, synchronously, which
    the manager treats as "cannot construct"; network problems surface when
    the returned object is awaited.
    """
    parse_uri(url)
    return websockets.connect(url, open_timeout=open_timeout)


class RealtimeSessionManager:
    """Collaboration session: connection state machine, events, and outbound operations"""

    def __init__(self,
                 host: str = "localhost:8080",
                 user_id: str = "current-user",
                 user_name: str = "Current User",
                 max_reconnect_attempts: int = 5,
                 reconnect_delay: float = 1.0,
                 open_timeout: float = 10.0,
                 degraded_delay: float = 0.1,
                 transport_factory: Optional[TransportFactory] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.host = host
        self.user_id = user_id
        self.user_name = user_name
        self.project_id: Optional[str] = None
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.open_timeout = open_timeout
        self.degraded_delay = degraded_delay
        self.error_handler = error_handler
        self._transport_factory = transport_factory or functools.partial(open_websocket, open_timeout=open_timeout)

        self.events = SessionEventBus(error_handler)
        self.state = ConnectionState.DISCONNECTED
        self.degraded = False
        self.reconnect_attempts = 0

        self._transport = None
        self._session_task: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closing: Set[asyncio.Task] = set()
        self._generation = 0
        self._explicit_disconnect = False

        self._invites: Dict[str, CollaborationInvite] = {}
        self._versions: Dict[Tuple[str, str], List[VersionHistory]] = {}
        self._notifications: Dict[str, Notification] = {}

        self.events.on("notification", self._store_notification)

    @classmethod
    def from_config(cls, config=PlannerConfig, **kwargs) -> "RealtimeSessionManager":
        kwargs.setdefault('host', config.COLLAB_WS_HOST)
        kwargs.setdefault('max_reconnect_attempts', config.COLLAB_MAX_RECONNECT_ATTEMPTS)
        kwargs.setdefault('reconnect_delay', config.COLLAB_RECONNECT_DELAY)
        kwargs.setdefault('open_timeout', config.COLLAB_OPEN_TIMEOUT)
        kwargs.setdefault('degraded_delay', config.COLLAB_DEGRADED_DELAY)
        return cls(**kwargs)

    # =========================================================================
    # EVENTS
    # =========================================================================

    def on(self, name: EventName, handler: EventHandler) -> None:
        self.events.on(name, handler)

    def off(self, name: EventName, handler: EventHandler) -> bool:
        return self.events.off(name, handler)

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def has_pending_reconnect(self) -> bool:
        return self._timer is not None and not self._timer.cancelled()

    def build_url(self, user_id: str, project_id: str) -> str:
        base = self.host if "://" in self.host else f"ws://{self.host}"
        query = urlencode({'userId': user_id, 'projectId': project_id})
        return f"{base.rstrip('/')}/collaboration?{query}"

    def reconnect_delay_for(self, attempt: int) -> float:
        """Linear backoff: attempt n waits reconnect_delay * n seconds"""
        return self.reconnect_delay * attempt

    def connect(self, user_id: str, project_id: str) -> None:
        """Open the session, replacing any existing connection or pending reconnect"""
        self._teardown()
        self.user_id = user_id
        self.project_id = project_id
        self.reconnect_attempts = 0
        self._explicit_disconnect = False
        self._open()

    def disconnect(self) -> None:
        """Close the session and suppress auto-reconnect. Safe to call in any state."""
        was_live = self.state != ConnectionState.DISCONNECTED or self.degraded
        self._explicit_disconnect = True
        self._teardown()
        self.state = ConnectionState.DISCONNECTED
        self.degraded = False

        if was_live:
            logger.info("Collaboration session disconnected by client")
            self.events.emit(SessionEventType.DISCONNECTED, {'reason': 'client'})

    async def close(self) -> None:
        """Disconnect and wait for the session task and socket to wind down"""
        self.disconnect()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    def _teardown(self) -> None:
        """Cancel timer and session task, close the transport. No events."""
        self._generation += 1
        self._cancel_timer()

        task, self._session_task = self._session_task, None
        if task is not None and not task.done():
            task.cancel()
            self._track(task)

        transport, self._transport = self._transport, None
        if transport is not None:
            self._close_transport(transport)

    def _close_transport(self, transport) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; leaving transport to be collected")
            return
        self._track(loop.create_task(transport.close()))

    def _track(self, task: asyncio.Task) -> None:
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    def _open(self) -> None:
        loop = asyncio.get_running_loop()
        user_id, project_id = self.user_id, self.project_id
        url = self.build_url(user_id, project_id)

        self.state = ConnectionState.CONNECTING
        self.degraded = False

        try:
            pending = self._transport_factory(url)
        except Exception as e:
            report_error(
                self.error_handler, logger, e,
                ErrorCategory.REALTIME_CONNECTION, ErrorSeverity.HIGH_DEGRADE,
                context="Failed to construct collaboration transport",
                operation="connect",
            )
            self._enter_degraded_mode(user_id, project_id)
            return

        generation = self._generation
        self._session_task = loop.create_task(self._run_session(pending, generation, user_id, project_id))

    def _enter_degraded_mode(self, user_id: str, project_id: str) -> None:
        logger.warning("Setting up offline collaboration mode; updates will not be transmitted")
        self.state = ConnectionState.DISCONNECTED
        self.degraded = True

        def announce():
            self._timer = None
            self.events.emit(SessionEventType.CONNECTED, {
                'userId': user_id,
                'projectId': project_id,
                'degraded': True,
            })

        self._timer = self._schedule(self.degraded_delay, announce)

    async def _run_session(self, pending, generation: int, user_id: str, project_id: str) -> None:
        try:
            transport = await pending
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._on_transport_error(e, "open")
            self._on_close(generation)
            return

        if generation != self._generation:
            await transport.close()
            return

        self._transport = transport
        self._on_open(user_id, project_id)

        try:
            async for message in transport:
                self._handle_message(message)
        except asyncio.CancelledError:
            raise
        except ConnectionClosedError as e:
            self._on_transport_error(e, "receive")
        except ConnectionClosed:
            pass
        except Exception as e:
            self._on_transport_error(e, "receive")

        self._on_close(generation)

    def _on_open(self, user_id: str, project_id: str) -> None:
        logger.info("Collaboration WebSocket connected")
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        self.events.emit(SessionEventType.CONNECTED, {'userId': user_id, 'projectId': project_id})

    def _on_transport_error(self, error: Exception, stage: str) -> None:
        report_error(
            self.error_handler, logger, error,
            ErrorCategory.REALTIME_CONNECTION, ErrorSeverity.LOW_DEBUG,
            context=f"WebSocket error during {stage}",
            operation="session",
        )
        self.events.emit(SessionEventType.ERROR, {'error': str(error), 'stage': stage})

    def _on_close(self, generation: int) -> None:
        if generation != self._generation:
            return

        self._transport = None
        self._session_task = None
        self.state = ConnectionState.DISCONNECTED
        logger.info("Collaboration WebSocket disconnected")
        self.events.emit(SessionEventType.DISCONNECTED, {})

        # A handler may have called connect() or disconnect() meanwhile
        if self._explicit_disconnect or generation != self._generation:
            return
        self._attempt_reconnect()

    def _attempt_reconnect(self) -> None:
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.warning(f"Giving up on collaboration socket after {self.reconnect_attempts} reconnect attempts")
            return

        self.reconnect_attempts += 1
        delay = self.reconnect_delay_for(self.reconnect_attempts)
        logger.info(f"Reconnecting in {delay:.1f}s ({self.reconnect_attempts}/{self.max_reconnect_attempts})")
        self._timer = self._schedule(delay, self._reconnect)

    def _reconnect(self) -> None:
        self._timer = None
        logger.info(f"Attempting to reconnect ({self.reconnect_attempts}/{self.max_reconnect_attempts})")
        self._open()

    def _handle_message(self, raw: Union[str, bytes]) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8', errors='replace')

        try:
            data = json.loads(raw)
            update = RealTimeUpdate.from_dict(data)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            report_error(
                self.error_handler, logger, e,
                ErrorCategory.MESSAGE_PARSING, ErrorSeverity.LOW_DEBUG,
                context="Failed to parse WebSocket message",
                operation="receive",
            )
            return

        self.events.emit(update.type, data)

    # =========================================================================
    # OUTBOUND UPDATES
    # =========================================================================

    def build_update(self, update_type: EventName, data: Any) -> RealTimeUpdate:
        return RealTimeUpdate(
            type=event_key(update_type),
            user_id=self.user_id,
            user_name=self.user_name,
            data=data,
        )

    async def send_update(self, update_type: EventName, data: Any) -> bool:
        """Transmit an update if connected; otherwise drop it. Never raises for transport trouble."""
        update = self.build_update(update_type, data)

        if self.state != ConnectionState.CONNECTED or self._transport is None:
            mode = "offline mode" if self.degraded else "not connected"
            logger.info(f"Collaboration socket {mode}, dropping update: {update.type}")
            return False

        try:
            await self._transport.send(update.to_json())
        except Exception as e:
            report_error(
                self.error_handler, logger, e,
                ErrorCategory.REALTIME_CONNECTION, ErrorSeverity.LOW_DEBUG,
                context=f"Failed to send {update.type}",
                operation="send_update",
            )
            return False
        return True

    async def update_user_presence(self, page: str, cursor: Optional[Cursor] = None) -> bool:
        return await self.send_update(SessionEventType.CURSOR_MOVED, {
            'page': page,
            'cursor': cursor.to_dict() if cursor else None,
        })

    async def set_typing_status(self, is_typing: bool, item_id: Optional[str] = None) -> bool:
        return await self.send_update(SessionEventType.TYPING_STATUS, {'isTyping': is_typing, 'itemId': item_id})

    # =========================================================================
    # COLLABORATOR MANAGEMENT
    # =========================================================================

    @staticmethod
    def generate_invite_token() -> str:
        return secrets.token_urlsafe(16)

    async def invite_collaborator(self, email: str, role: Union[CollaboratorRole, str]) -> CollaborationInvite:
        """Create a pending invite valid for seven days. Sending the email is someone else's job."""
        role = parse_role(role)
        if role not in INVITABLE_ROLES:
            raise ValueError("Invites can only grant editor or viewer access")

        invited_at = utc_now()
        invite = CollaborationInvite(
            id=uuid.uuid4().hex,
            email=email,
            role=role,
            invited_by=self.user_id,
            invited_at=invited_at,
            expires_at=invited_at + INVITE_LIFETIME,
            token=self.generate_invite_token(),
        )
        self._invites[invite.token] = invite
        logger.info(f"Invitation created for {email} as {role.value}")
        return invite

    async def accept_invite(self, token: str) -> bool:
        invite = self._invites.get(token)
        if invite is None:
            logger.warning("Unknown invite token")
            return False

        if invite.status != InviteStatus.PENDING:
            return False

        if invite.is_expired():
            invite.status = InviteStatus.EXPIRED
            logger.info(f"Invite for {invite.email} has expired")
            return False

        invite.status = InviteStatus.ACCEPTED
        logger.info(f"Invite accepted by {invite.email}")
        return True

    async def update_collaborator_role(self, collaborator_id: str, new_role: Union[CollaboratorRole, str]) -> bool:
        """Remote half of a role change; the caller updates its local collaborator."""
        new_role = parse_role(new_role)
        logger.info(f"Updating collaborator role: {collaborator_id} -> {new_role.value}")
        await self.send_update(SessionEventType.ITEM_UPDATED, {
            'itemType': 'collaborator',
            'itemId': collaborator_id,
            'changes': {'role': new_role.value},
        })
        return True

    async def remove_collaborator(self, collaborator_id: str) -> bool:
        logger.info(f"Removing collaborator: {collaborator_id}")
        await self.send_update(SessionEventType.ITEM_UPDATED, {
            'itemType': 'collaborator',
            'itemId': collaborator_id,
            'removed': True,
        })
        return True

    def has_permission(self, collaborator: Collaborator, action: str) -> bool:
        return has_permission(collaborator, action)

    # =========================================================================
    # COMMENTS AND THREADS
    # =========================================================================

    async def add_comment(self, thread_id: str, content: str, mentions: Sequence[str] = (),
                          item_type: Optional[str] = None, item_id: Optional[str] = None) -> Comment:
        """
        Build the comment, broadcast it, and hand it back for optimistic insertion.
        itemType/itemId ride along so peers can open the thread on first sight.
        """
        comment = Comment(
            id=uuid.uuid4().hex,
            content=content,
            author_id=self.user_id,
            author_name=self.user_name,
            mentions=list(mentions),
        )
        payload = {'threadId': thread_id, 'comment': comment.to_dict()}
        if item_type is not None and item_id is not None:
            payload.update({'itemType': item_type, 'itemId': item_id})
        await self.send_update(SessionEventType.COMMENT_ADDED, payload)
        return comment

    async def update_comment(self, comment_id: str, content: str) -> bool:
        await self.send_update(SessionEventType.COMMENT_UPDATED, {'commentId': comment_id, 'content': content})
        return True

    async def delete_comment(self, comment_id: str) -> bool:
        await self.send_update(SessionEventType.COMMENT_DELETED, {'commentId': comment_id})
        return True

    async def add_reaction(self, comment_id: str, emoji: str) -> bool:
        await self.send_update(SessionEventType.REACTION_ADDED, {'commentId': comment_id, 'emoji': emoji})
        return True

    async def resolve_thread(self, thread_id: str) -> bool:
        await self.send_update(SessionEventType.THREAD_RESOLVED, {'threadId': thread_id})
        return True

    # =========================================================================
    # ACTIVITY AND VERSIONS
    # =========================================================================

    def log_activity(self, activity_type: Union[ActivityType, str], description: str,
                     metadata: Optional[Dict[str, Any]] = None, **item) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            id=uuid.uuid4().hex,
            type=ActivityType(activity_type) if isinstance(activity_type, str) else activity_type,
            user_id=self.user_id,
            user_name=self.user_name,
            description=description,
            metadata=metadata,
            item_type=item.get('item_type'),
            item_id=item.get('item_id'),
            item_name=item.get('item_name'),
        )
        logger.info(f"Activity logged: {entry.type.value} - {description}")
        return entry

    async def save_version(self, item_type: str, item_id: str,
                           changes: Sequence[Union[VersionChange, Dict[str, Any]]],
                           description: str) -> VersionHistory:
        history = self._versions.setdefault((item_type, item_id), [])
        version = VersionHistory(
            id=uuid.uuid4().hex,
            item_type=item_type,
            item_id=item_id,
            version=len(history) + 1,
            changes=[c if isinstance(c, VersionChange) else VersionChange(**c) for c in changes],
            changed_by=self.user_id,
            changed_at=utc_now(),
            description=description,
        )
        history.append(version)
        logger.info(f"Version {version.version} saved for {item_type}/{item_id}")
        return version

    async def get_version_history(self, item_type: str, item_id: str) -> List[VersionHistory]:
        """Newest version first"""
        return list(reversed(self._versions.get((item_type, item_id), [])))

    async def restore_version(self, version_id: str) -> bool:
        for history in self._versions.values():
            for version in history:
                if version.id == version_id:
                    logger.info(f"Restoring version {version.version} of {version.item_type}/{version.item_id}")
                    await self.send_update(SessionEventType.ITEM_UPDATED, {
                        'itemType': version.item_type,
                        'itemId': version.item_id,
                        'restoredVersion': version.version,
                        'changes': [{'field': c.field, 'value': c.old_value} for c in version.changes],
                    })
                    return True
        logger.warning(f"Unknown version id: {version_id}")
        return False

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _store_notification(self, event: SessionEvent) -> None:
        payload = event.data.get('data') if isinstance(event.data, dict) else None
        if not isinstance(payload, dict) or 'id' not in payload:
            return
        try:
            kind = NotificationType(payload.get('type', 'update'))
        except ValueError:
            kind = NotificationType.UPDATE
        notification = Notification(
            id=str(payload['id']),
            type=kind,
            message=payload.get('message', ''),
            user_id=payload.get('userId', event.data.get('userId', '')),
        )
        self._notifications[notification.id] = notification

    async def mark_notification_as_read(self, notification_id: str) -> bool:
        notification = self._notifications.get(notification_id)
        if notification is None:
            return False
        notification.is_read = True
        return True

    async def get_unread_notifications(self) -> List[Notification]:
        return [n for n in self._notifications.values() if not n.is_read]
