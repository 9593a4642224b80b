"""
tests/test_passwords.py -- Basic and strong password policies.
"""

import pytest

from auth.passwords import PasswordPolicy, basic_policy, strong_policy
from core.config import get_settings
from documents.maintenance import AdminPasswordError, admin_seed

SETTINGS = get_settings()


class TestBasicPolicy:
    def test_six_characters_pass(self):
        assert basic_policy(SETTINGS).validate("abcdef") == []

    def test_short_password_names_the_minimum(self):
        violations = basic_policy(SETTINGS).validate("abc")
        assert len(violations) == 1
        assert "6" in violations[0]

    def test_no_character_classes_required(self):
        assert basic_policy(SETTINGS).is_valid("aaaaaaaaaa")


class TestStrongPolicy:
    def test_compliant_password(self):
        assert strong_policy(SETTINGS).validate("Str0ng!Admin#Key") == []

    def test_each_missing_class_is_reported(self):
        violations = strong_policy(SETTINGS).validate("a" * 5 + "bcdefghijkl")
        # Missing uppercase, digit and special character; also a run of a's.
        assert len(violations) == 4

    def test_common_password_rejected(self):
        policy = PasswordPolicy(min_length=6, reject_common=True)
        assert not policy.is_valid("Password123")
        assert policy.is_valid("Password1234x")

    def test_repeat_run_rejected(self):
        assert not strong_policy(SETTINGS).is_valid("Aaaaaa1!bcdefgh")

    def test_max_length(self):
        assert not basic_policy(SETTINGS).is_valid("x" * 129)


class TestPolicySettings:
    """Minimum lengths follow the Settings a policy is built from."""

    def test_minimums_come_from_the_given_settings(self):
        tuned = SETTINGS.model_copy(update={"basic_password_min_length": 10, "strong_password_min_length": 20})
        assert basic_policy(tuned).min_length == 10
        assert strong_policy(tuned).min_length == 20

    def test_admin_seed_uses_the_given_settings(self):
        tuned = SETTINGS.model_copy(update={"strong_password_min_length": 20})
        with pytest.raises(AdminPasswordError):
            admin_seed(tuned)

    def test_app_settings_reach_registration(self, env_factory):
        with env_factory(basic_password_min_length=10) as env:
            resp = env.client.post(
                "/api/register", json={"name": "Self", "email": "self@example.com", "password": "secret1"}
            )
            assert resp.status_code == 400
            assert "10" in resp.json()["error"]

    def test_app_settings_reach_password_reset(self, env_factory):
        with env_factory(basic_password_min_length=10) as env:
            assert env.client.app.state.reset_manager.policy.min_length == 10
