#!/usr/bin/env python3
"""
Role and permission checks for project collaborators
"""

from typing import Union

from planner_datashapes import ROLE_PERMISSIONS, Collaborator, CollaboratorRole, Permissions

# Roles an invite may grant; ownership is never handed out by invite
INVITABLE_ROLES = frozenset({CollaboratorRole.EDITOR, CollaboratorRole.VIEWER})

ACTION_PERMISSIONS = {
    'edit_budget': 'can_edit_budget',
    'edit_checklist': 'can_edit_checklist',
    'edit_vision_board': 'can_edit_vision_board',
    'edit_vendors': 'can_edit_vendors',
    'invite_others': 'can_invite_others',
    'manage_roles': 'can_manage_roles',
}


def parse_role(role: Union[CollaboratorRole, str]) -> CollaboratorRole:
    if isinstance(role, CollaboratorRole):
        return role
    try:
        return CollaboratorRole(str(role).lower())
    except ValueError:
        raise ValueError(f"Unknown collaborator role: {role!r}")


def permissions_for_role(role: Union[CollaboratorRole, str]) -> Permissions:
    return ROLE_PERMISSIONS[parse_role(role)]


def has_permission(collaborator: Collaborator, action: str) -> bool:
    """
    Owners may do anything. Known actions are looked up in the role's
    permission record; unknown actions are allowed for editors only.
    """
    if collaborator.role == CollaboratorRole.OWNER:
        return True

    field_name = ACTION_PERMISSIONS.get(action)
    if field_name is None:
        # Unrecognized action: editors yes, viewers no
        return collaborator.role == CollaboratorRole.EDITOR

    return getattr(collaborator.permissions, field_name)
