"""Tests for :mod:`vaulty_bot.onboarding.engine`."""

from __future__ import annotations

import asyncio
import datetime
from dataclasses import replace

import pytest
from fakes import (
    FAST,
    FakeChannel,
    FakeProvisioning,
    FakeWriter,
    RecordingNotifier,
    make_guild,
    make_member,
    make_message,
)

from vaulty_bot.core.errors import AlreadyOnboarding
from vaulty_bot.core.models import NOT_PROVIDED, utc_now
from vaulty_bot.core.storage import GuildConfigStore
from vaulty_bot.onboarding.completion import TEST_ROLES_MARKER
from vaulty_bot.onboarding.engine import SessionEngine


def configured_store(tmp_path, guild_id: int = 1) -> GuildConfigStore:
    store = GuildConfigStore(tmp_path / "config.json")
    store.configure(guild_id, make_guild(guild_id))
    return store


def make_engine(store, *, writer=None, notifier=None, timings=FAST):
    provisioning = FakeProvisioning()
    writer = writer or FakeWriter()
    engine = SessionEngine(store, provisioning, writer, notifier, timings=timings)
    return engine, provisioning, writer


def test_full_onboarding_flow(tmp_path) -> None:
    """A bad email is re-asked and ``skip`` records the phone as not provided."""
    store = configured_store(tmp_path)
    notifier = RecordingNotifier()
    engine, provisioning, writer = make_engine(store, notifier=notifier)
    member = make_member()
    channel = FakeChannel()

    async def scenario():
        session = await engine.start(channel, member)
        assert "**Question 1/3:**" in channel.sent[-1]
        for answer in ["khaby", "bad-email", "khaby@example.com", "skip"]:
            assert await engine.handle_incoming_answer(make_message(member, channel, answer))
        await engine.drain()
        return session

    session = asyncio.run(scenario())

    assert session.responses == {
        "tiktok_handle": "khaby",
        "email_address": "khaby@example.com",
        "whatsapp_number": NOT_PROVIDED,
    }
    assert len(writer.rows) == 1
    tab, headers, row = writer.rows[0]
    assert tab == "Test Guild Onboarding"
    assert len(headers) == len(row)
    assert row[6:9] == ["khaby", "khaby@example.com", NOT_PROVIDED]
    assert row[9] == "Onboarded"
    assert provisioning.nicknames == ["@khaby"]
    assert provisioning.role_calls == [member.id]
    assert provisioning.deleted == [channel]
    assert engine.session_count() == 0
    assert any("valid email" in text for text in channel.sent)
    assert any("completed onboarding" in text for text in channel.sent)
    titles = [title for _, title, _ in notifier.messages]
    assert titles == ["New Onboarding", "Onboarding Complete"]


def test_invalid_answer_leaves_session_unchanged(tmp_path) -> None:
    store = configured_store(tmp_path)
    engine, _, _ = make_engine(store)
    member = make_member()
    channel = FakeChannel()

    async def scenario():
        session = await engine.start(channel, member)
        await engine.handle_incoming_answer(make_message(member, channel, "khaby"))
        before = (session.current_question_index, dict(session.responses))
        await engine.handle_incoming_answer(make_message(member, channel, "not-an-email"))
        await engine.handle_incoming_answer(make_message(member, channel, "still@wrong"))
        after = (session.current_question_index, dict(session.responses))
        engine.shutdown()
        return before, after

    before, after = asyncio.run(scenario())
    assert before == after == (1, {"tiktok_handle": "khaby"})


def test_second_start_raises_already_onboarding(tmp_path) -> None:
    store = configured_store(tmp_path)
    engine, _, _ = make_engine(store)
    member = make_member()

    async def scenario():
        first = await engine.start(FakeChannel(), member)
        with pytest.raises(AlreadyOnboarding):
            await engine.start(FakeChannel(), member)
        assert engine.registry.get(member.id) is first
        engine.shutdown()

    asyncio.run(scenario())


def test_begin_refuses_member_already_onboarding(tmp_path) -> None:
    """No second channel is created for a member who is mid-session."""
    store = configured_store(tmp_path)
    engine, provisioning, _ = make_engine(store)
    member = make_member()

    async def scenario():
        channel, _ = await engine.begin(member)
        assert channel.sent[0] == "Welcome khaby"
        with pytest.raises(AlreadyOnboarding):
            await engine.begin(member)
        engine.shutdown()

    asyncio.run(scenario())
    assert len(provisioning.created) == 1


def test_messages_outside_the_session_are_ignored(tmp_path) -> None:
    store = configured_store(tmp_path)
    engine, _, _ = make_engine(store)
    member = make_member()
    stranger = make_member(user_id=7, name="stranger")
    channel = FakeChannel()

    async def scenario():
        session = await engine.start(channel, member)
        other = await engine.handle_incoming_answer(make_message(stranger, channel, "hello"))
        elsewhere = await engine.handle_incoming_answer(make_message(member, FakeChannel(), "khaby"))
        engine.shutdown()
        return session, other, elsewhere

    session, other, elsewhere = asyncio.run(scenario())
    assert other is False
    assert elsewhere is False
    assert session.current_question_index == 0


def test_optional_empty_and_skip_are_equivalent(tmp_path) -> None:
    store = configured_store(tmp_path)
    store.add_question(1, "Any website?", validation="optional")
    for qid in ("tiktok_handle", "email_address", "whatsapp_number"):
        store.set_question_active(1, qid, False)

    results = []
    for answer in ["skip", "", "SKIP"]:
        engine, _, writer = make_engine(store)
        member = make_member()
        channel = FakeChannel()

        async def scenario():
            session = await engine.start(channel, member)
            await engine.handle_incoming_answer(make_message(member, channel, answer))
            await engine.drain()
            return session

        session = asyncio.run(scenario())
        results.append(list(session.responses.values()))
        assert len(writer.rows) == 1

    assert results == [[NOT_PROVIDED]] * 3


def test_empty_catalog_completes_immediately(tmp_path) -> None:
    store = configured_store(tmp_path)
    for qid in ("tiktok_handle", "email_address", "whatsapp_number"):
        store.set_question_active(1, qid, False)
    engine, provisioning, writer = make_engine(store)

    async def scenario():
        await engine.start(FakeChannel(), make_member())
        await engine.drain()

    asyncio.run(scenario())
    assert len(writer.rows) == 1
    assert provisioning.nicknames == []
    assert engine.session_count() == 0


def test_test_mode_skips_roles_and_tags_row(tmp_path) -> None:
    store = configured_store(tmp_path)
    engine, provisioning, writer = make_engine(store)
    member = make_member()
    channel = FakeChannel()

    async def scenario():
        await engine.start(channel, member, test_mode=True)
        assert channel.sent[-1].startswith("🧪 **Test Question 1/3:**")
        for answer in ["khaby", "khaby@example.com", "+1 234 567 8900"]:
            await engine.handle_incoming_answer(make_message(member, channel, answer))
        await engine.drain()

    asyncio.run(scenario())
    row = writer.rows[0][2]
    assert provisioning.role_calls == []
    assert row[-2] == TEST_ROLES_MARKER
    assert row[-1].startswith("TEST-")
    assert any("test channel will be deleted" in text for text in channel.sent)


def test_completion_failure_still_clears_session(tmp_path) -> None:
    """An unconfigured guild fails completion but never leaves a stuck session."""
    store = GuildConfigStore(tmp_path / "config.json")
    notifier = RecordingNotifier()
    engine, _, writer = make_engine(store, notifier=notifier)
    member = make_member()
    channel = FakeChannel()

    async def scenario():
        await engine.start(channel, member)
        for answer in ["khaby", "khaby@example.com", "skip"]:
            await engine.handle_incoming_answer(make_message(member, channel, answer))

    asyncio.run(scenario())
    assert writer.rows == []
    assert not engine.is_onboarding(member.id)
    assert "/server-setup" in channel.sent[-1]
    assert notifier.messages[-1][1] == "Critical Error"


def test_save_failure_is_reported_but_onboarding_finishes(tmp_path) -> None:
    store = configured_store(tmp_path)
    notifier = RecordingNotifier()
    engine, provisioning, _ = make_engine(
        store, writer=FakeWriter(fail=RuntimeError("sheets down")), notifier=notifier
    )
    member = make_member()
    channel = FakeChannel()

    async def scenario():
        await engine.start(channel, member)
        for answer in ["khaby", "khaby@example.com", "skip"]:
            await engine.handle_incoming_answer(make_message(member, channel, answer))
        await engine.drain()

    asyncio.run(scenario())
    assert any("couldn't save your answers" in text for text in channel.sent)
    assert provisioning.role_calls == [member.id]
    assert provisioning.deleted == [channel]
    assert ("Critical Error" in [title for _, title, _ in notifier.messages])


def test_clear_session_cancels_timers(tmp_path) -> None:
    store = configured_store(tmp_path)
    engine, _, _ = make_engine(store)
    member = make_member()

    async def scenario():
        session = await engine.start(FakeChannel(), member)
        reminder = session.reminder_task
        assert engine.clear_session(member.id) is True
        await asyncio.sleep(0)
        return session, reminder

    session, reminder = asyncio.run(scenario())
    assert reminder.cancelled()
    assert session.reminder_task is None and session.expire_task is None
    assert engine.clear_session(member.id) is False


def test_inactive_session_expires_and_channel_is_removed(tmp_path) -> None:
    store = configured_store(tmp_path)
    timings = replace(FAST, reminder_after=0.01, expire_after=0.03)
    engine, provisioning, writer = make_engine(store, timings=timings)
    member = make_member()
    channel = FakeChannel()

    async def scenario():
        await engine.start(channel, member)
        await asyncio.sleep(0.1)
        await engine.drain()

    asyncio.run(scenario())
    assert engine.session_count() == 0
    assert any("Just checking in" in text for text in channel.sent)
    assert any("expired due to inactivity" in text for text in channel.sent)
    assert provisioning.deleted == [channel]
    assert writer.rows == []


def test_session_index_never_decreases(tmp_path) -> None:
    store = configured_store(tmp_path)
    engine, _, _ = make_engine(store)
    member = make_member()
    channel = FakeChannel()
    answers = ["", "khaby", "nope", "khaby@example.com", "12"]

    async def scenario():
        session = await engine.start(channel, member)
        seen = [session.current_question_index]
        for answer in answers:
            await engine.handle_incoming_answer(make_message(member, channel, answer))
            seen.append(session.current_question_index)
        engine.shutdown()
        return seen

    seen = asyncio.run(scenario())
    assert seen == sorted(seen)
    assert seen[-1] == 2


class SlowWriter(FakeWriter):
    async def append_row(self, tab, headers, row) -> None:
        await asyncio.sleep(0.05)
        await super().append_row(tab, headers, row)


def test_messages_during_completion_are_swallowed(tmp_path) -> None:
    """A "thanks!" sent while the row is being saved neither errors nor frees the member."""
    store = configured_store(tmp_path)
    engine, _, writer = make_engine(store, writer=SlowWriter())
    member = make_member()
    channel = FakeChannel()

    async def scenario():
        await engine.start(channel, member)
        for answer in ["khaby", "khaby@example.com"]:
            await engine.handle_incoming_answer(make_message(member, channel, answer))
        finishing = asyncio.create_task(
            engine.handle_incoming_answer(make_message(member, channel, "skip"))
        )
        await asyncio.sleep(0.01)
        assert engine.registry.get(member.id).completing
        sent_before = len(channel.sent)
        consumed = await engine.handle_incoming_answer(make_message(member, channel, "thanks!"))
        still_onboarding = engine.is_onboarding(member.id)
        quiet = len(channel.sent) == sent_before
        await finishing
        await engine.drain()
        return consumed, still_onboarding, quiet

    consumed, still_onboarding, quiet = asyncio.run(scenario())
    assert consumed is True
    assert still_onboarding is True
    assert quiet is True
    assert not any("issue with the onboarding process" in text for text in channel.sent)
    assert len(writer.rows) == 1
    assert engine.session_count() == 0


class BrokenWelcomeProvisioning(FakeProvisioning):
    async def send_welcome(self, channel, member, *, test_mode: bool = False) -> None:
        raise RuntimeError("missing access")


class QuestionlessChannel(FakeChannel):
    async def send(self, content=None, **kwargs) -> None:
        if content and "Question" in content:
            raise RuntimeError("cannot send")
        await super().send(content, **kwargs)


class QuestionlessProvisioning(FakeProvisioning):
    async def create_private_channel(self, member, *, test_mode: bool = False) -> FakeChannel:
        channel = QuestionlessChannel()
        self.created.append(channel)
        return channel


def test_begin_removes_channel_when_welcome_fails(tmp_path) -> None:
    store = configured_store(tmp_path)
    provisioning = BrokenWelcomeProvisioning()
    engine = SessionEngine(store, provisioning, FakeWriter(), timings=FAST)

    with pytest.raises(RuntimeError):
        asyncio.run(engine.begin(make_member()))

    assert provisioning.deleted == provisioning.created
    assert engine.session_count() == 0


def test_begin_clears_session_when_first_question_fails(tmp_path) -> None:
    store = configured_store(tmp_path)
    provisioning = QuestionlessProvisioning()
    engine = SessionEngine(store, provisioning, FakeWriter(), timings=FAST)
    member = make_member()

    with pytest.raises(RuntimeError):
        asyncio.run(engine.begin(member))

    assert provisioning.deleted == provisioning.created
    assert not engine.is_onboarding(member.id)


def test_restart_replaces_session_and_retires_old_channel(tmp_path) -> None:
    store = configured_store(tmp_path)
    engine, provisioning, _ = make_engine(store)
    member = make_member()

    async def scenario():
        old_channel, first = await engine.begin(member)
        await engine.handle_incoming_answer(make_message(member, old_channel, "khaby"))
        new_channel, second = await engine.restart(member, old_channel=old_channel)
        await engine.drain()
        current = engine.registry.get(member.id)
        engine.shutdown()
        return old_channel, new_channel, first, second, current

    old_channel, new_channel, first, second, current = asyncio.run(scenario())
    assert current is second and second is not first
    assert second.current_question_index == 0
    assert second.channel_id == new_channel.id
    assert provisioning.deleted == [old_channel]
    assert any("Onboarding Restarted" in text for text in old_channel.sent)


def test_purge_removes_only_stale_onboarding_channels(tmp_path) -> None:
    store = configured_store(tmp_path)
    engine, provisioning, _ = make_engine(store)
    member = make_member()
    now = utc_now()
    stale = FakeChannel("onboarding-khaby")
    stale.created_at = now - datetime.timedelta(hours=49)
    fresh = FakeChannel("test-onboarding-other")
    fresh.created_at = now - datetime.timedelta(hours=1)
    general = FakeChannel("general")
    general.created_at = now - datetime.timedelta(days=30)

    async def scenario():
        await engine.start(stale, member)
        return await engine.purge_stale_channels([stale, fresh, general], now=now)

    report = asyncio.run(scenario())
    assert report.found == 2
    assert report.purged == ["onboarding-khaby"]
    assert report.failed == []
    assert provisioning.deleted == [stale]
    assert not engine.is_onboarding(member.id)
