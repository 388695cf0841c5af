"""
Role & capability table.

Pure data, loaded once per process. Scopes are independent sets, not nested
subsets of each other. Changing any grant means bumping
CAPABILITY_TABLE_VERSION; the mappings are read-only at runtime.
"""
from enum import Enum
from types import MappingProxyType
from typing import Mapping


CAPABILITY_TABLE_VERSION = "2024.1"


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    PROPERTY_MANAGER = "property_manager"
    VENDOR = "vendor"
    PROPERTY_OWNER = "property_owner"
    TENANT = "tenant"


class ActorStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Scope(str, Enum):
    READ_ONLY = "read_only"
    TASK_BASED = "task_based"
    BILLING_ACCESS = "billing_access"
    FULL = "full"


class Action(str, Enum):
    VIEW = "view"
    CREATE_TASK = "create_task"
    UPDATE_TASK_STATUS = "update_task_status"
    COMMENT = "comment"
    VIEW_BILLING = "view_billing"
    RECORD_PAYMENT = "record_payment"
    EDIT_PROPERTY = "edit_property"
    ASSIGN_SUB_VENDOR = "assign_sub_vendor"
    # Owner-only: subscribe or unsubscribe a manager on an owned property
    ASSIGN_MANAGER = "assign_manager"


class ResourceType(str, Enum):
    PROPERTY = "property"
    TASK = "task"
    APPLICATION = "application"
    VENDOR = "vendor"
    MANAGER = "manager"
    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"


SCOPE_CAPABILITIES: Mapping[Scope, frozenset[Action]] = MappingProxyType({
    Scope.READ_ONLY: frozenset({Action.VIEW}),
    Scope.TASK_BASED: frozenset({
        Action.VIEW,
        Action.CREATE_TASK,
        Action.UPDATE_TASK_STATUS,
        Action.COMMENT,
    }),
    Scope.BILLING_ACCESS: frozenset({
        Action.VIEW,
        Action.VIEW_BILLING,
        Action.RECORD_PAYMENT,
    }),
    Scope.FULL: frozenset({
        Action.VIEW,
        Action.CREATE_TASK,
        Action.UPDATE_TASK_STATUS,
        Action.COMMENT,
        Action.VIEW_BILLING,
        Action.RECORD_PAYMENT,
        Action.EDIT_PROPERTY,
        Action.ASSIGN_SUB_VENDOR,
    }),
})


# Base grants on resources the actor owns. Super admins bypass the table.
ROLE_BASE_GRANTS: Mapping[Role, frozenset[Action]] = MappingProxyType({
    Role.SUPER_ADMIN: frozenset(Action),
    Role.PROPERTY_OWNER: SCOPE_CAPABILITIES[Scope.FULL] | {Action.ASSIGN_MANAGER},
    Role.TENANT: frozenset(),
    Role.PROPERTY_MANAGER: frozenset(),
    Role.VENDOR: frozenset(),
})


# Keys of Actor.permission_overrides, one per action
PERMISSION_KEYS: Mapping[Action, str] = MappingProxyType({
    Action.VIEW: "view_assigned_properties",
    Action.CREATE_TASK: "create_tasks",
    Action.UPDATE_TASK_STATUS: "update_task_status",
    Action.COMMENT: "comment_on_tasks",
    Action.VIEW_BILLING: "view_billing",
    Action.RECORD_PAYMENT: "record_payments",
    Action.EDIT_PROPERTY: "edit_properties",
    Action.ASSIGN_SUB_VENDOR: "assign_vendors",
    Action.ASSIGN_MANAGER: "assign_properties",
})


# Scope a delegate gets when the assigner does not name one
DEFAULT_SCOPE: Mapping[Role, Scope] = MappingProxyType({
    Role.PROPERTY_MANAGER: Scope.FULL,
    Role.VENDOR: Scope.TASK_BASED,
})


def capability_set(scope: Scope | str) -> frozenset[Action]:
    """Actions granted by an assignment edge with `scope`."""
    return SCOPE_CAPABILITIES[Scope(scope)]


def base_grant(role: Role | str) -> frozenset[Action]:
    """Actions a role holds on resources it owns."""
    return ROLE_BASE_GRANTS.get(Role(role), frozenset())


def permission_key_for(action: Action | str) -> str:
    return PERMISSION_KEYS[Action(action)]


def scope_covers(scope: Scope | str, action: Action | str) -> bool:
    return Action(action) in capability_set(scope)


def known_permission_keys() -> frozenset[str]:
    return frozenset(PERMISSION_KEYS.values())
