"""Script environment parsing."""

from arca_deploy.utils import parse_env_flag, parse_vault_ids


def test_parse_vault_ids():
    assert parse_vault_ids(None) is None
    assert parse_vault_ids("") is None
    assert parse_vault_ids(" , ") is None
    assert parse_vault_ids("ws-usdc, test1-usdc") == ["ws-usdc", "test1-usdc"]


def test_parse_env_flag():
    assert parse_env_flag("true")
    assert parse_env_flag("TRUE")
    assert parse_env_flag("1")
    assert not parse_env_flag(None)
    assert not parse_env_flag("false")
