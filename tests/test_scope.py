"""
tests/test_scope.py -- AccessPolicy decisions without a database.

Fixture population mirrors conftest: agent A1 owns clients C1 and C2, agent
A2 owns C3.
"""

import pytest

from auth.models import Role, User
from auth.scope import (
    FORBIDDEN,
    SELF_DELETE,
    AccessPolicy,
    Action,
    Actor,
    Entity,
    Target,
    assigned_agent_id,
    assigned_role,
)

ADMIN = Actor(id="admin", role=Role.ADMIN)
A1 = Actor(id="a1", role=Role.AGENT, client_ids=frozenset({"c1", "c2"}))
A2 = Actor(id="a2", role=Role.AGENT, client_ids=frozenset({"c3"}))
C1 = Actor(id="c1", role=Role.CLIENT, agent_id="a1")

C1_USER = User(id="c1", email="c1@x.io", name="C1", role=Role.CLIENT, agent_id="a1")
C3_USER = User(id="c3", email="c3@x.io", name="C3", role=Role.CLIENT, agent_id="a2")
A1_USER = User(id="a1", email="a1@x.io", name="A1", role=Role.AGENT)


@pytest.fixture
def policy():
    return AccessPolicy()


class TestSelfDelete:
    @pytest.mark.parametrize("actor", [ADMIN, A1, C1])
    def test_nobody_deletes_themselves(self, policy, actor):
        target = Target(id=actor.id, owner_id=actor.id, role=actor.role)
        decision = policy.decide(actor, Entity.USER, Action.DELETE, target)
        assert not decision.allowed
        assert decision.reason == SELF_DELETE

    def test_admin_deletes_others(self, policy):
        assert policy.decide(ADMIN, Entity.USER, Action.DELETE, Target.of_user(A1_USER)).allowed


class TestAgentRules:
    def test_own_client_and_self(self, policy):
        assert policy.decide(A1, Entity.USER, Action.UPDATE, Target.of_user(C1_USER)).allowed
        assert policy.decide(A1, Entity.USER, Action.READ, Target.of_user(A1_USER)).allowed

    def test_other_agents_client_is_forbidden(self, policy):
        decision = policy.decide(A1, Entity.USER, Action.READ, Target.of_user(C3_USER))
        assert not decision.allowed
        assert decision.reason == FORBIDDEN

    def test_creates_clients_only(self, policy):
        assert policy.decide(A1, Entity.USER, Action.CREATE, Target(role=Role.CLIENT)).allowed
        assert policy.decide(A1, Entity.USER, Action.CREATE, Target()).allowed
        assert not policy.decide(A1, Entity.USER, Action.CREATE, Target(role=Role.AGENT)).allowed

    def test_folder_access_follows_owner_agent(self, policy):
        assert policy.decide(A1, Entity.FOLDER, Action.DELETE, Target.owned_by(C1_USER, "f1")).allowed
        assert not policy.decide(A2, Entity.FOLDER, Action.READ, Target.owned_by(C1_USER, "f1")).allowed

    def test_list_scope_is_own_clients(self, policy):
        scope = policy.scope(A1, Entity.FOLDER)
        assert scope.permits_user("c1") and scope.permits_user("c2")
        assert not scope.permits_user("c3")

    def test_notification_audience(self, policy):
        mine = Target(id="n", owner_id="a1", for_role=Role.AGENT)
        admin_only = Target(id="n", owner_id="a1", for_role=Role.ADMIN)
        someone_else = Target(id="n", owner_id="c1", for_role=Role.CLIENT)
        assert policy.decide(A1, Entity.NOTIFICATION, Action.UPDATE, mine).allowed
        assert not policy.decide(A1, Entity.NOTIFICATION, Action.UPDATE, admin_only).allowed
        assert not policy.decide(A1, Entity.NOTIFICATION, Action.DELETE, someone_else).allowed
        assert policy.decide(A1, Entity.NOTIFICATION, Action.CREATE).allowed


class TestClientRules:
    def test_reads_self_and_own_agent(self, policy):
        assert policy.decide(C1, Entity.USER, Action.READ, Target.of_user(C1_USER)).allowed
        assert policy.decide(C1, Entity.USER, Action.READ, Target.of_user(A1_USER)).allowed
        assert not policy.decide(C1, Entity.USER, Action.READ, Target.of_user(C3_USER)).allowed

    def test_updates_only_self(self, policy):
        assert policy.decide(C1, Entity.USER, Action.UPDATE, Target.of_user(C1_USER)).allowed
        assert not policy.decide(C1, Entity.USER, Action.UPDATE, Target.of_user(A1_USER)).allowed

    def test_never_creates_users(self, policy):
        assert not policy.decide(C1, Entity.USER, Action.CREATE, Target(role=Role.CLIENT)).allowed

    @pytest.mark.parametrize("action", [Action.CREATE, Action.UPDATE, Action.DELETE])
    def test_documents_are_read_only(self, policy, action):
        target = Target.owned_by(C1_USER, "f1")
        assert not policy.decide(C1, Entity.FOLDER, action, target).allowed
        assert not policy.decide(C1, Entity.FILE, action, target).allowed

    def test_reads_own_documents(self, policy):
        assert policy.decide(C1, Entity.FILE, Action.READ, Target.owned_by(C1_USER, "x")).allowed
        assert not policy.decide(C1, Entity.FILE, Action.READ, Target.owned_by(C3_USER, "x")).allowed

    def test_cannot_send_notifications(self, policy):
        assert not policy.decide(C1, Entity.NOTIFICATION, Action.CREATE).allowed

    def test_activity_scope_is_self_only(self, policy):
        scope = policy.scope(C1, Entity.ACTIVITY)
        assert scope.user_ids == frozenset({"c1"})
        assert not scope.subject_ids and not scope.metadata_ids


class TestActivityScope:
    def test_agent_scope_includes_subjects_and_legacy_metadata(self, policy):
        scope = policy.scope(A1, Entity.ACTIVITY)
        assert scope.user_ids == frozenset({"a1", "c1", "c2"})
        assert scope.subject_ids == frozenset({"c1", "c2"})
        assert scope.metadata_ids == frozenset({"c1", "c2"})

    def test_legacy_metadata_matching_can_be_disabled(self):
        scope = AccessPolicy(legacy_activity_metadata=False).scope(A1, Entity.ACTIVITY)
        assert scope.metadata_ids == frozenset()

    def test_agent_reads_row_about_client(self, policy):
        target = Target(id="act", owner_id="admin", subject_id="c2")
        assert policy.decide(A1, Entity.ACTIVITY, Action.READ, target).allowed
        assert not policy.decide(A2, Entity.ACTIVITY, Action.READ, target).allowed


class TestCreationHelpers:
    def test_agent_role_and_owner_are_forced(self):
        assert assigned_role(A1, Role.ADMIN) == Role.CLIENT
        assert assigned_agent_id(A1, Role.CLIENT, "a2") == "a1"

    def test_admin_choices_are_kept(self):
        assert assigned_role(ADMIN, Role.AGENT) == Role.AGENT
        assert assigned_role(ADMIN, None) == Role.CLIENT
        assert assigned_agent_id(ADMIN, Role.CLIENT, "a2") == "a2"
        assert assigned_agent_id(ADMIN, Role.AGENT, "a2") is None


class TestPolicyGuards:
    def test_instance_action_requires_target(self, policy):
        with pytest.raises(ValueError):
            policy.decide(A1, Entity.FOLDER, Action.READ)

    def test_every_entity_role_pair_has_a_rule(self, policy):
        for entity in Entity:
            for role in Role:
                assert role in policy.rules[entity], f"no rule for {role.value} on {entity.value}"
