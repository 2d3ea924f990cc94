#!/usr/bin/env python3
"""
Collaboration Workspace - Local view of a shared wedding project

Keeps collaborators, who is online, comment threads, the recent activity log
and the connection flag for one RealtimeSessionManager. Local changes for
role updates, removals and new comments are applied first; if the remote half
refuses or blows up, they are put back and CollaborationError is raised.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from collab_permissions import has_permission, parse_role
from planner_datashapes import (
    ActiveUser, ActivityLog, ActivityLogEntry, ActivityType, CollaborationInvite,
    Collaborator, CollaboratorRole, Comment, CommentThread, Cursor, utc_now
)
from planner_errors import CollaborationError, ErrorCategory, ErrorSeverity, report_error
from realtime_session import RealtimeSessionManager
from session_events import SessionEvent, SessionEventType

logger = logging.getLogger(__name__)


def _payload(event: SessionEvent) -> Dict[str, Any]:
    """Inner 'data' of a wire envelope, or the event data itself for local events"""
    envelope = event.data if isinstance(event.data, dict) else {}
    inner = envelope.get('data')
    return inner if isinstance(inner, dict) else envelope


class CollaborationWorkspace:
    """Session-local collaboration state fed by a RealtimeSessionManager"""

    def __init__(self, manager: RealtimeSessionManager):
        self.manager = manager
        self.collaborators: Dict[str, Collaborator] = {}
        self.active_users: Dict[str, ActiveUser] = {}
        self.threads: Dict[str, CommentThread] = {}
        self.activity_log = ActivityLog()
        self.is_connected = False
        self.is_degraded = False

        self._subscriptions = [
            (SessionEventType.CONNECTED, self._on_connected),
            (SessionEventType.DISCONNECTED, self._on_disconnected),
            (SessionEventType.USER_JOINED, self._on_user_joined),
            (SessionEventType.USER_LEFT, self._on_user_left),
            (SessionEventType.CURSOR_MOVED, self._on_cursor_moved),
            (SessionEventType.TYPING_STATUS, self._on_typing_status),
            (SessionEventType.ITEM_UPDATED, self._on_item_updated),
            (SessionEventType.COMMENT_ADDED, self._on_comment_added),
        ]
        for name, handler in self._subscriptions:
            manager.on(name, handler)

    def detach(self) -> None:
        """Stop listening to the manager"""
        for name, handler in self._subscriptions:
            self.manager.off(name, handler)

    # =========================================================================
    # SESSION EVENTS
    # =========================================================================

    def _on_connected(self, event: SessionEvent) -> None:
        self.is_connected = True
        self.is_degraded = bool(event.data.get('degraded')) if isinstance(event.data, dict) else False

    def _on_disconnected(self, event: SessionEvent) -> None:
        self.is_connected = False
        self.is_degraded = False

    def _on_user_joined(self, event: SessionEvent) -> None:
        envelope = event.data if isinstance(event.data, dict) else {}
        user_id = envelope.get('userId')
        if not user_id or user_id in self.active_users:
            return

        payload = _payload(event)
        self.active_users[user_id] = ActiveUser(
            user_id=user_id,
            user_name=envelope.get('userName', ''),
            current_page=payload.get('page') or 'dashboard',
            avatar=payload.get('avatar'),
        )

    def _on_user_left(self, event: SessionEvent) -> None:
        envelope = event.data if isinstance(event.data, dict) else {}
        self.active_users.pop(envelope.get('userId'), None)

    def _touch_user(self, event: SessionEvent) -> Optional[ActiveUser]:
        envelope = event.data if isinstance(event.data, dict) else {}
        user_id = envelope.get('userId')
        if not user_id or user_id == self.manager.user_id:
            return None
        user = self.active_users.get(user_id)
        if user is None:
            user = self.active_users[user_id] = ActiveUser(user_id=user_id, user_name=envelope.get('userName', ''))
        user.last_seen = utc_now()
        return user

    def _on_cursor_moved(self, event: SessionEvent) -> None:
        user = self._touch_user(event)
        if user is None:
            return
        payload = _payload(event)
        user.current_page = payload.get('page') or user.current_page
        cursor = payload.get('cursor')
        user.cursor = Cursor(cursor.get('x', 0), cursor.get('y', 0), cursor.get('itemId')) if cursor else None

    def _on_typing_status(self, event: SessionEvent) -> None:
        user = self._touch_user(event)
        if user is not None:
            user.is_typing = bool(_payload(event).get('isTyping'))

    def _on_item_updated(self, event: SessionEvent) -> None:
        payload = _payload(event)
        logger.debug(f"Item updated: {payload.get('itemType')}/{payload.get('itemId')}")

    def _on_comment_added(self, event: SessionEvent) -> None:
        payload = _payload(event)
        raw_comment = payload.get('comment')
        if not isinstance(raw_comment, dict):
            return

        try:
            comment = Comment.from_dict(raw_comment)
        except (TypeError, ValueError, AttributeError) as e:
            report_error(
                self.manager.error_handler, logger, e,
                ErrorCategory.MESSAGE_PARSING, ErrorSeverity.LOW_DEBUG,
                context="Malformed comment in comment_added",
                operation="comment_added",
            )
            return

        thread = self._thread_for(payload)
        if thread is None:
            return

        # Our own comments come back as echoes
        if any(existing.id == comment.id for existing in thread.comments):
            return
        thread.comments.append(comment)
        if comment.author_id and comment.author_id not in thread.participants:
            thread.participants.append(comment.author_id)

    def _thread_for(self, payload: Dict[str, Any]) -> Optional[CommentThread]:
        """Known thread for the payload, or a new one when it names its item"""
        thread_id = payload.get('threadId')
        if isinstance(thread_id, str) and thread_id in self.threads:
            return self.threads[thread_id]

        item_type, item_id = payload.get('itemType'), payload.get('itemId')
        if not isinstance(item_type, str) or not isinstance(item_id, str):
            return None
        thread = CommentThread(item_type=item_type, item_id=item_id)
        if thread_id is not None and thread_id != thread.id:
            return None
        self.threads[thread.id] = thread
        return thread

    # =========================================================================
    # COLLABORATORS
    # =========================================================================

    def add_collaborator(self, collaborator: Collaborator) -> None:
        self.collaborators[collaborator.id] = collaborator

    def get_collaborator(self, collaborator_id: str) -> Collaborator:
        try:
            return self.collaborators[collaborator_id]
        except KeyError:
            raise KeyError(f"Unknown collaborator: {collaborator_id}")

    async def invite_collaborator(self, email: str, role: Union[CollaboratorRole, str]) -> CollaborationInvite:
        invite = await self.manager.invite_collaborator(email, role)
        self.log_activity(ActivityType.INVITE, f"Invited {email} as {invite.role.value}")
        return invite

    async def update_collaborator_role(self, collaborator_id: str, new_role: Union[CollaboratorRole, str]) -> Collaborator:
        collaborator = self.get_collaborator(collaborator_id)
        new_role = parse_role(new_role)
        previous_role = collaborator.role

        collaborator.role = new_role

        def rollback():
            collaborator.role = previous_role

        await self._confirm("update_collaborator_role", rollback,
                            self.manager.update_collaborator_role(collaborator_id, new_role))
        self.log_activity(ActivityType.ROLE_CHANGE, f"Changed role to {new_role.value}")
        return collaborator

    async def remove_collaborator(self, collaborator_id: str) -> None:
        collaborator = self.get_collaborator(collaborator_id)
        del self.collaborators[collaborator_id]

        def rollback():
            self.collaborators[collaborator_id] = collaborator

        await self._confirm("remove_collaborator", rollback,
                            self.manager.remove_collaborator(collaborator_id))
        self.log_activity(ActivityType.UPDATE, "Removed collaborator")

    # =========================================================================
    # COMMENTS
    # =========================================================================

    def get_comment_thread(self, item_type: str, item_id: str) -> Optional[CommentThread]:
        return self.threads.get(CommentThread(item_type, item_id).id)

    async def add_comment(self, item_type: str, item_id: str, content: str,
                          mentions: Sequence[str] = ()) -> Comment:
        """Create the thread on first comment, then append the comment locally and remotely"""
        thread = self.get_comment_thread(item_type, item_id)
        created_thread = thread is None
        if created_thread:
            thread = CommentThread(item_type=item_type, item_id=item_id, participants=[self.manager.user_id])
            self.threads[thread.id] = thread

        def rollback():
            if created_thread:
                self.threads.pop(thread.id, None)

        try:
            comment = await self.manager.add_comment(thread.id, content, mentions,
                                                     item_type=item_type, item_id=item_id)
        except Exception as e:
            rollback()
            raise CollaborationError("add_comment", str(e)) from e

        if all(existing.id != comment.id for existing in thread.comments):
            thread.comments.append(comment)
        self.log_activity(ActivityType.COMMENT, f"Added comment on {item_type}")
        return comment

    async def _confirm(self, operation: str, rollback, remote) -> None:
        """Await the remote half; undo the local change if it refuses or raises"""
        try:
            accepted = await remote
        except Exception as e:
            rollback()
            report_error(
                self.manager.error_handler, logger, e,
                ErrorCategory.COLLABORATION_SYNC, ErrorSeverity.MEDIUM_ALERT,
                context="Remote update failed, local change rolled back",
                operation=operation,
            )
            raise CollaborationError(operation, str(e)) from e

        if not accepted:
            rollback()
            logger.warning(f"{operation} rejected, local change rolled back")
            raise CollaborationError(operation)

    # =========================================================================
    # PRESENCE, ACTIVITY, PERMISSIONS
    # =========================================================================

    async def update_user_presence(self, page: str, cursor: Optional[Cursor] = None) -> bool:
        return await self.manager.update_user_presence(page, cursor)

    def log_activity(self, activity_type: Union[ActivityType, str], description: str,
                     metadata: Optional[Dict[str, Any]] = None, **item) -> ActivityLogEntry:
        entry = self.manager.log_activity(activity_type, description, metadata, **item)
        self.activity_log.append(entry)
        return entry

    def recent_activity(self, limit: Optional[int] = None) -> List[ActivityLogEntry]:
        entries = self.activity_log.entries()
        return entries[:limit] if limit is not None else entries

    def has_permission(self, action: str) -> bool:
        """Check the connected user's own role; unknown users have no permissions"""
        current = self.collaborators.get(self.manager.user_id)
        return has_permission(current, action) if current else False
