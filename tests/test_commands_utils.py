"""Tests for :mod:`vaulty_bot.commands.utils`."""

import asyncio
from types import SimpleNamespace

from fakes import FAST, FakeChannel, FakeProvisioning, FakeWriter, make_member

from vaulty_bot.commands.utils import (
    REQUIRED_PERMISSIONS,
    health_label,
    onboarding_channel_owner,
    parse_id_list,
    server_health,
    setup_overrides,
)
from vaulty_bot.core.models import GuildConfig
from vaulty_bot.core.storage import GuildConfigStore
from vaulty_bot.onboarding.engine import SessionEngine


def test_parse_id_list_accepts_commas_and_spaces() -> None:
    assert parse_id_list("a, b  c,,d") == ["a", "b", "c", "d"]
    assert parse_id_list("  ") == []


def test_setup_rerun_keeps_sheet_tab_and_questions(tmp_path) -> None:
    store = GuildConfigStore(tmp_path / "config.json")
    store.configure(1, SimpleNamespace(name="Original", text_channels=[]))
    store.add_question(1, "Extra?")
    existing = store.get_config(1)

    renamed = SimpleNamespace(name="Renamed", text_channels=[])
    cfg = store.configure(1, renamed, setup_overrides(existing, audit_channel=55))

    assert cfg.name == "Renamed"
    assert cfg.sheet_tab == "Original Onboarding"
    assert len(cfg.questions) == 4
    assert cfg.audit_channel == 55
    assert cfg.joined_at == existing.joined_at


def test_fresh_setup_has_no_overrides() -> None:
    assert setup_overrides(None) == {}
    assert setup_overrides(None, welcome_channel="hi") == {"welcome_channel": "hi"}


def test_modal_validation_parsing() -> None:
    import pytest

    from vaulty_bot.core.errors import ValidationFailed
    from vaulty_bot.ui.modals import parse_validation

    assert parse_validation(" Email ") == "email"
    assert parse_validation("") == "required"
    with pytest.raises(ValidationFailed):
        parse_validation("numeric")


def status_guild(*, role_names=("Welcome", "Onboarding", "Onboarded"), channels=(), **perm_flags):
    flags = {name: True for name in REQUIRED_PERMISSIONS}
    flags.update(perm_flags)
    by_id = {c.id: c for c in channels}
    return SimpleNamespace(
        me=SimpleNamespace(guild_permissions=SimpleNamespace(**flags)),
        roles=[SimpleNamespace(name=n) for n in role_names],
        text_channels=list(channels),
        get_channel=by_id.get,
    )


def test_healthy_server_has_no_issues() -> None:
    welcome = SimpleNamespace(id=10, name="welcome")
    audit = SimpleNamespace(id=11, name="audit")
    cfg = GuildConfig(
        guild_id=1,
        name="Guild",
        sheet_tab="Guild Onboarding",
        welcome_channel="welcome",
        audit_channel=11,
        welcome_role="Welcome",
    )
    issues = server_health(status_guild(channels=[welcome, audit]), cfg)
    assert issues == []
    assert health_label(issues) == "Excellent"


def test_server_health_reports_each_problem() -> None:
    cfg = GuildConfig(guild_id=1, name="Guild", sheet_tab="Guild Onboarding", welcome_role="Welcome")
    issues = server_health(status_guild(role_names=("Onboarding",), manage_roles=False), cfg)
    assert issues == [
        "Missing permission: manage_roles",
        "No audit channel configured",
        "Welcome channel not found",
        "Missing roles: Welcome, Onboarded",
    ]
    assert health_label(issues) == "Warning"
    assert health_label(issues + ["one more"]) == "Critical"
    assert health_label(issues[:2]) == "Good"


def test_channel_owner_prefers_live_session(tmp_path) -> None:
    store = GuildConfigStore(tmp_path / "config.json")
    engine = SessionEngine(store, FakeProvisioning(), FakeWriter(), timings=FAST)
    member = make_member(user_id=42, name="renamed")
    other = make_member(user_id=7, name="khaby")
    channel = FakeChannel("onboarding-khaby")
    guild = SimpleNamespace(members=[other, member], get_member={42: member, 7: other}.get)

    async def scenario():
        await engine.start(channel, member)
        found = onboarding_channel_owner(guild, channel, engine)
        engine.shutdown()
        return found

    assert asyncio.run(scenario()) is member
    assert onboarding_channel_owner(guild, FakeChannel("test-onboarding-khaby"), engine) is other
    assert onboarding_channel_owner(guild, FakeChannel("general"), engine) is None
