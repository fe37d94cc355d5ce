"""Tests for :class:`vaulty_bot.bot.VaultyBot` event routing and command registration."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

from fakes import FakeWriter, RecordingNotifier, make_guild, make_member

from vaulty_bot.bot import VaultyBot
from vaulty_bot.commands.register import register_commands
from vaulty_bot.core.storage import GuildConfigStore


def make_bot(tmp_path):
    store = GuildConfigStore(tmp_path / "config.json")
    notifier = RecordingNotifier()
    bot = VaultyBot(store, FakeWriter(), notifier, sync_per_guild=False)
    return bot, store, notifier


def test_intents_cover_members_and_messages(tmp_path) -> None:
    bot, _, _ = make_bot(tmp_path)
    assert bot.intents.members is True
    assert bot.intents.message_content is True


def test_register_commands_builds_tree(tmp_path) -> None:
    bot, store, _ = make_bot(tmp_path)
    register_commands(bot, store)

    names = {command.name for command in bot.tree.get_commands()}
    assert names == {
        "server-setup",
        "server-config",
        "questions",
        "onboard",
        "test-onboard",
        "onboarding-list",
        "onboarding-clear",
        "restart-onboarding",
        "server-status",
        "create-onboarding-roles",
        "cleanup-onboarding",
    }
    config_group = bot.tree.get_command("server-config")
    assert {c.name for c in config_group.commands} == {
        "view",
        "set-welcome",
        "set-audit",
        "set-roles",
        "add-admin-role",
        "remove-admin-role",
        "reset",
    }
    questions_group = bot.tree.get_command("questions")
    assert {c.name for c in questions_group.commands} == {
        "list",
        "add",
        "edit",
        "remove",
        "reorder",
        "toggle",
        "reset",
    }


def test_guild_leave_and_rejoin_toggle_config(tmp_path) -> None:
    bot, store, notifier = make_bot(tmp_path)
    guild = make_guild(7, "Creators")
    store.configure(7, guild)

    asyncio.run(bot.on_guild_remove(guild))
    assert not store.is_configured(7)

    asyncio.run(bot.on_guild_join(guild))
    assert store.is_configured(7)
    assert notifier.messages == []


def test_joining_unknown_guild_alerts_operator(tmp_path) -> None:
    bot, store, notifier = make_bot(tmp_path)
    asyncio.run(bot.on_guild_join(make_guild(8, "Fresh")))
    assert store.get_config(8) is None
    assert notifier.messages[0][1] == "New Server"


def test_member_join_in_unconfigured_guild_is_ignored(tmp_path) -> None:
    bot, _, _ = make_bot(tmp_path)
    asyncio.run(bot.on_member_join(make_member()))
    assert bot.engine.session_count() == 0


def test_bot_messages_are_not_routed(tmp_path) -> None:
    bot, _, _ = make_bot(tmp_path)
    called = []

    async def fake_handle(message):
        called.append(message)
        return True

    bot.engine.handle_incoming_answer = fake_handle
    author = SimpleNamespace(bot=True)
    asyncio.run(bot.on_message(SimpleNamespace(author=author, guild=make_guild())))
    human = SimpleNamespace(bot=False)
    asyncio.run(bot.on_message(SimpleNamespace(author=human, guild=make_guild(), channel=SimpleNamespace(id=1))))
    assert len(called) == 1


def test_ready_after_reconnect_does_not_resync(tmp_path, monkeypatch) -> None:
    store = GuildConfigStore(tmp_path / "config.json")
    notifier = RecordingNotifier()
    bot = VaultyBot(store, FakeWriter(), notifier, sync_per_guild=True)
    guild = make_guild(3, "Creators")
    synced = []

    async def fake_presence(**_kwargs):
        return None

    async def fake_sync(g):
        synced.append(g.id)

    monkeypatch.setattr(VaultyBot, "guilds", property(lambda self: [guild]))
    bot.change_presence = fake_presence
    bot._sync_guild = fake_sync

    async def scenario():
        await bot.on_ready()
        await bot.on_ready()

    asyncio.run(scenario())
    assert synced == [3]
    assert [title for _, title, _ in notifier.messages] == ["Bot Started"]
