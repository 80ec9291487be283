import pytest

import conf
from models.errors import Forbidden
from models.operations.authorization import Identity, admin_email_policy, authorize
from utils import env
from utils.env import EnvVarSpec

PORT = EnvVarSpec(id="TEST_PORT", default="8000", parse=int, type=(int, ...))
REQUIRED = EnvVarSpec(id="TEST_REQUIRED")
OPTIONAL = EnvVarSpec(id="TEST_OPTIONAL", is_optional=True)


def test_parse_applies_default_and_parser(monkeypatch):
    monkeypatch.delenv("TEST_PORT", raising=False)
    assert env.parse(PORT) == 8000
    monkeypatch.setenv("TEST_PORT", "9001")
    assert env.parse(PORT) == 9001


def test_empty_value_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("TEST_PORT", "")
    assert env.parse(PORT) == 8000


def test_validate(monkeypatch):
    monkeypatch.delenv("TEST_REQUIRED", raising=False)
    monkeypatch.delenv("TEST_OPTIONAL", raising=False)
    assert env.validate([OPTIONAL]) is True
    assert env.validate([REQUIRED]) is False

    monkeypatch.setenv("TEST_REQUIRED", "yes")
    monkeypatch.setenv("TEST_PORT", "eighty")
    assert env.validate([REQUIRED]) is True
    assert env.validate([REQUIRED, PORT]) is False


def test_conf_rejects_non_positive_sweep_interval(monkeypatch):
    monkeypatch.setenv("EXPIRY_SWEEP_INTERVAL_SECONDS", "0")
    assert conf.validate() is False
    monkeypatch.setenv("EXPIRY_SWEEP_INTERVAL_SECONDS", "15")
    assert conf.validate() is True
    assert conf.get_expiry_sweep_interval_seconds() == 15


def test_cors_origins_are_split(monkeypatch):
    monkeypatch.setenv("CLIENT_URL", "http://a.test, http://b.test,")
    assert conf.get_cors_origins() == ["http://a.test", "http://b.test"]


def test_admin_policy_matches_email_ignoring_case():
    policy = admin_email_policy("Admin@Example.com")
    assert policy(Identity(uid="1", email="admin@example.COM"))
    assert not policy(Identity(uid="2", email="someone@example.com"))
    assert not policy(Identity(uid="3"))


def test_admin_policy_without_admin_email_denies_everyone():
    policy = admin_email_policy(None)
    assert not policy(Identity(uid="1", email=""))
    with pytest.raises(Forbidden, match="Forbidden: Admins only"):
        authorize(policy, Identity(uid="1", email="admin@example.com"))


def test_conf_admin_policy_reads_env(monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", "boss@example.com")
    policy = conf.get_admin_policy()
    assert policy(Identity(uid="1", email="BOSS@example.com"))
