"""
auth/scope.py -- Access scope resolver.

Answers one question for every request: may this actor perform this action on
this entity, and if it is a listing, which rows may it see?

    policy = AccessPolicy()
    decision = policy.decide(actor, Entity.FOLDER, Action.READ, target)
    if not decision.allowed: -> 403 (or 400 for self-delete)
    scope = policy.scope(actor, Entity.FOLDER)   # for list queries

Pattern: exhaustive dispatch table. _RULES maps every Entity to a rule per
Role. The table is checked at import time -- adding an Entity or Role without
a rule for every pairing fails loudly instead of leaving a permissive gap.

The resolver is pure: it never touches the database. Callers load the target
row (and the actor's client ids) first and describe it with a Target.

Ownership chain: File -> Folder -> owning User (usually a CLIENT) -> that
client's AGENT via agent_id.

Layer rule: no imports from api/ or documents/.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from auth.models import Role, User


class Entity(str, Enum):
    USER = "USER"
    FOLDER = "FOLDER"
    FILE = "FILE"
    NOTIFICATION = "NOTIFICATION"
    ACTIVITY = "ACTIVITY"


class Action(str, Enum):
    LIST = "LIST"
    READ = "READ"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Deny reasons. Routes map every reason except SELF_DELETE to a generic 403.
FORBIDDEN = "forbidden"
SELF_DELETE = "self_delete"


@dataclass(frozen=True)
class Actor:
    """The authenticated identity behind a request.

    client_ids is only populated for AGENT actors; agent_id only for CLIENTs.
    """

    id: str
    role: Role
    agent_id: str | None = None
    client_ids: frozenset[str] = frozenset()

    @classmethod
    def from_user(cls, user: User, client_ids: Iterable[str] = ()) -> "Actor":
        return cls(
            id=user.id,
            role=user.role,
            agent_id=user.agent_id if user.role == Role.CLIENT else None,
            client_ids=frozenset(client_ids) if user.role == Role.AGENT else frozenset(),
        )


@dataclass(frozen=True)
class Target:
    """Facts about an already-loaded entity instance.

    owner_id means: the user itself (USER), the folder's owning user (FOLDER,
    FILE), the recipient (NOTIFICATION) or the acting user (ACTIVITY).
    owner_agent_id is the agent_id of that owner. role is the target user's
    role, or the requested role when creating a user.
    """

    id: str | None = None
    owner_id: str | None = None
    owner_agent_id: str | None = None
    role: Role | None = None
    for_role: Role | None = None
    subject_id: str | None = None
    metadata: str | None = None

    @classmethod
    def of_user(cls, user: User) -> "Target":
        return cls(id=user.id, owner_id=user.id, owner_agent_id=user.agent_id, role=user.role)

    @classmethod
    def owned_by(cls, owner: User, target_id: str | None = None) -> "Target":
        """Target for a folder or file whose folder belongs to owner."""
        return cls(id=target_id, owner_id=owner.id, owner_agent_id=owner.agent_id)


@dataclass(frozen=True)
class ScopeFilter:
    """Which rows of an entity an actor's list query may return.

    user_ids None means unrestricted. The meaning of user_ids per entity:
      USER          -- row id
      FOLDER, FILE  -- the folder's owning user id
      NOTIFICATION  -- recipient id (AND for_role in for_roles)
      ACTIVITY      -- acting user id (OR subject_user_id in subject_ids,
                       OR metadata containing one of metadata_ids)
    """

    user_ids: frozenset[str] | None = None
    for_roles: frozenset[Role] | None = None
    subject_ids: frozenset[str] = frozenset()
    metadata_ids: frozenset[str] = frozenset()

    @property
    def unrestricted(self) -> bool:
        return self.user_ids is None and self.for_roles is None

    def permits_user(self, user_id: str | None) -> bool:
        """Return True if rows owned by user_id fall inside this scope."""
        return self.user_ids is None or user_id in self.user_ids


UNRESTRICTED = ScopeFilter()


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    scope: ScopeFilter | None = None
    reason: str | None = None

    @classmethod
    def allow(cls, scope: ScopeFilter = UNRESTRICTED) -> "AccessDecision":
        return cls(allowed=True, scope=scope)

    @classmethod
    def deny(cls, reason: str = FORBIDDEN) -> "AccessDecision":
        return cls(allowed=False, reason=reason)

    @classmethod
    def when(cls, condition: bool, scope: ScopeFilter = UNRESTRICTED) -> "AccessDecision":
        return cls.allow(scope) if condition else cls.deny()


# ---------------------------------------------------------------------------
# Helpers used by routes when creating users
# ---------------------------------------------------------------------------


def assigned_role(actor: Actor, requested: Role | None) -> Role:
    """Role actually given to a user created by actor. Agents only create clients."""
    if actor.role == Role.AGENT:
        return Role.CLIENT
    return requested or Role.CLIENT


def assigned_agent_id(actor: Actor, role: Role, requested: str | None) -> str | None:
    """agent_id actually stored for a user created by actor.

    An agent's clients always belong to that agent, whatever the request body
    says. Admins may attach a new client to any agent.
    """
    if actor.role == Role.AGENT:
        return actor.id
    if actor.role == Role.ADMIN and role == Role.CLIENT:
        return requested
    return None


# ---------------------------------------------------------------------------
# Rules
#
# Signature: rule(policy, actor, action, target) -> AccessDecision.
# target is None only for LIST and, for some entities, CREATE.
# ---------------------------------------------------------------------------

Rule = Callable[["AccessPolicy", Actor, Action, "Target | None"], AccessDecision]


def _admin_any(policy: "AccessPolicy", actor: Actor, action: Action, target: Target | None) -> AccessDecision:
    return AccessDecision.allow()


# -- USER -------------------------------------------------------------------


def _agent_user(policy: "AccessPolicy", actor: Actor, action: Action, target: Target | None) -> AccessDecision:
    if action == Action.LIST:
        return AccessDecision.allow(ScopeFilter(user_ids=actor.client_ids))
    if action == Action.CREATE:
        requested = target.role if target else None
        return AccessDecision.when(requested in (None, Role.CLIENT))
    return AccessDecision.when(target.id == actor.id or target.owner_agent_id == actor.id)


def _client_user(policy: "AccessPolicy", actor: Actor, action: Action, target: Target | None) -> AccessDecision:
    visible = frozenset(i for i in (actor.id, actor.agent_id) if i)
    if action == Action.LIST:
        return AccessDecision.allow(ScopeFilter(user_ids=visible))
    if action == Action.READ:
        return AccessDecision.when(target.id in visible)
    if action == Action.UPDATE:
        return AccessDecision.when(target.id == actor.id)
    return AccessDecision.deny()


# -- FOLDER / FILE ----------------------------------------------------------


def _agent_document(policy: "AccessPolicy", actor: Actor, action: Action, target: Target | None) -> AccessDecision:
    if action == Action.LIST:
        return AccessDecision.allow(ScopeFilter(user_ids=actor.client_ids))
    return AccessDecision.when(target is not None and target.owner_agent_id == actor.id)


def _client_document(policy: "AccessPolicy", actor: Actor, action: Action, target: Target | None) -> AccessDecision:
    if action == Action.LIST:
        return AccessDecision.allow(ScopeFilter(user_ids=frozenset({actor.id})))
    if action == Action.READ:
        return AccessDecision.when(target.owner_id == actor.id)
    # Clients are read-only for folders and files.
    return AccessDecision.deny()


# -- NOTIFICATION -----------------------------------------------------------

_AGENT_NOTIFICATION_ROLES = frozenset({Role.CLIENT, Role.AGENT})
_CLIENT_NOTIFICATION_ROLES = frozenset({Role.CLIENT})


def _agent_notification(policy: "AccessPolicy", actor: Actor, action: Action, target: Target | None) -> AccessDecision:
    if action == Action.LIST:
        return AccessDecision.allow(ScopeFilter(user_ids=frozenset({actor.id}), for_roles=_AGENT_NOTIFICATION_ROLES))
    if action == Action.CREATE:
        return AccessDecision.allow()
    return AccessDecision.when(target.owner_id == actor.id and target.for_role in _AGENT_NOTIFICATION_ROLES)


def _client_notification(
    policy: "AccessPolicy", actor: Actor, action: Action, target: Target | None
) -> AccessDecision:
    if action == Action.LIST:
        return AccessDecision.allow(ScopeFilter(user_ids=frozenset({actor.id}), for_roles=_CLIENT_NOTIFICATION_ROLES))
    if action == Action.CREATE:
        return AccessDecision.deny()
    return AccessDecision.when(target.owner_id == actor.id and target.for_role in _CLIENT_NOTIFICATION_ROLES)


# -- ACTIVITY ---------------------------------------------------------------


def _agent_activity(policy: "AccessPolicy", actor: Actor, action: Action, target: Target | None) -> AccessDecision:
    scope = ScopeFilter(
        user_ids=actor.client_ids | {actor.id},
        subject_ids=actor.client_ids,
        metadata_ids=actor.client_ids if policy.legacy_activity_metadata else frozenset(),
    )
    if action == Action.LIST:
        return AccessDecision.allow(scope)
    if action != Action.READ:
        # Activities are written by the server, never through the API.
        return AccessDecision.deny()
    visible = (
        target.owner_id in scope.user_ids
        or target.subject_id in scope.subject_ids
        or any(cid in (target.metadata or "") for cid in scope.metadata_ids)
    )
    return AccessDecision.when(visible)


def _client_activity(policy: "AccessPolicy", actor: Actor, action: Action, target: Target | None) -> AccessDecision:
    if action == Action.LIST:
        return AccessDecision.allow(ScopeFilter(user_ids=frozenset({actor.id})))
    if action != Action.READ:
        return AccessDecision.deny()
    return AccessDecision.when(target.owner_id == actor.id)


_RULES: dict[Entity, dict[Role, Rule]] = {
    Entity.USER: {Role.ADMIN: _admin_any, Role.AGENT: _agent_user, Role.CLIENT: _client_user},
    Entity.FOLDER: {Role.ADMIN: _admin_any, Role.AGENT: _agent_document, Role.CLIENT: _client_document},
    Entity.FILE: {Role.ADMIN: _admin_any, Role.AGENT: _agent_document, Role.CLIENT: _client_document},
    Entity.NOTIFICATION: {
        Role.ADMIN: _admin_any,
        Role.AGENT: _agent_notification,
        Role.CLIENT: _client_notification,
    },
    Entity.ACTIVITY: {Role.ADMIN: _admin_any, Role.AGENT: _agent_activity, Role.CLIENT: _client_activity},
}


def _check_exhaustive(rules: dict[Entity, dict[Role, Rule]]) -> None:
    missing = [(e.value, r.value) for e in Entity for r in Role if r not in rules.get(e, {})]
    if missing:
        raise RuntimeError(f"Access rules missing for (entity, role) pairs: {missing}")


_check_exhaustive(_RULES)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessPolicy:
    """Entry point for access decisions.

    legacy_activity_metadata: when True, agents also see activities whose
    serialized metadata contains one of their client ids. This matches rows
    written before subject_user_id existed, at the cost of substring false
    positives.
    """

    legacy_activity_metadata: bool = True
    rules: dict[Entity, dict[Role, Rule]] = field(default_factory=lambda: _RULES, repr=False)

    def decide(self, actor: Actor, entity: Entity, action: Action, target: Target | None = None) -> AccessDecision:
        """Return the decision for actor performing action on entity.

        Self-deletion is refused for every role, admins included, before any
        role rule runs.
        """
        if action not in (Action.LIST, Action.CREATE) and target is None:
            raise ValueError(f"{action.value} on {entity.value} requires a loaded target")
        if entity == Entity.USER and action == Action.DELETE and target.id == actor.id:
            return AccessDecision.deny(SELF_DELETE)
        return self.rules[entity][actor.role](self, actor, action, target)

    def scope(self, actor: Actor, entity: Entity) -> ScopeFilter:
        """Return the list-query scope for actor on entity."""
        decision = self.decide(actor, entity, Action.LIST)
        return decision.scope if decision.allowed and decision.scope is not None else ScopeFilter(user_ids=frozenset())
