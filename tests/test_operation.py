from __future__ import annotations

import pytest

from conftest import GUILD, INVOKER, SOURCE_CHANNEL, make_message
from mover.dialog import (
    ChannelSelected,
    DestinationKindSelected,
    DialogField,
    StreamClosed,
    SubmitPressed,
    TitleEntered,
    TransitionKind,
    UsersSelected,
)
from mover.errors import (
    ChannelBusy,
    MoveCancelled,
    MoveError,
    MoveValidationError,
    PlatformError,
    RelayFailure,
)
from mover.locks import ChannelLockRegistry
from mover.models import MoveRequest, ReactionEvent
from mover.operation import MoveOperation

MUTATING_CALLS = {
    "create_thread",
    "create_forum_post",
    "create_webhook",
    "execute_webhook",
    "delete_message",
    "delete_messages",
    "delete_channel",
    "send_message",
}


def _conversation(platform):
    # Two authors, five messages, ten minutes.
    msgs = [
        make_message(0, 1, content="did anyone see the deploy?"),
        make_message(60, 2, content="yes, it failed"),
        make_message(120, 1, content="logs?"),
        make_message(300, 2, content="attached"),
        make_message(600, 1, content="thanks"),
    ]
    platform.messages[SOURCE_CHANNEL] = list(msgs)
    return msgs


def _driver(*events):
    seen = []

    async def run_dialog(dialog):
        seen.append(dialog)
        for event in events:
            t = dialog.handle_event(event)
            if t.kind is TransitionKind.SUBMITTED:
                return t.options
            if t.kind is TransitionKind.ABANDONED:
                return None
        return None

    run_dialog.seen = seen
    return run_dialog


class _Spawned:
    """Collects spawned coroutines so a test can run them on demand."""

    def __init__(self):
        self.coros = []

    def __call__(self, coro):
        self.coros.append(coro)
        return None

    def __len__(self):
        return len(self.coros)

    async def drain(self):
        coros, self.coros = self.coros, []
        for coro in coros:
            await coro


def _operation(platform, settings, locks, start, run_dialog, spawned):
    request = MoveRequest(
        guild_id=GUILD,
        source_channel_id=SOURCE_CHANNEL,
        start_message=start,
        invoker_id=INVOKER,
    )
    return MoveOperation(platform, locks, settings, request, run_dialog, spawn=spawned)


NEW_THREAD_TEST = (
    DestinationKindSelected("New Thread"),
    ChannelSelected(DialogField.CHANNEL, 2000),
    TitleEntered("Test"),
    SubmitPressed(),
)


@pytest.mark.asyncio
async def test_move_into_new_thread(platform, settings) -> None:
    msgs = _conversation(platform)
    locks = ChannelLockRegistry(poll_interval=settings.lock_poll_interval)
    spawned = _Spawned()
    op = _operation(platform, settings, locks, msgs[0], _driver(*NEW_THREAD_TEST), spawned)

    reply = await op.run()

    assert platform.created_threads == [(2000, "Test")]
    thread_id = op.destination.thread_id
    assert reply == f"<@{INVOKER}> moved a conversation from here to <#{thread_id}>."
    assert [e["content"] for e in platform.executed] == [m.content for m in msgs]
    assert [e["username"] for e in platform.executed] == [m.author_name for m in msgs]
    assert all(e["thread_id"] == thread_id for e in platform.executed)
    notice_channel, notice = platform.sent[0]
    assert notice_channel == thread_id
    assert "Participants:" in notice
    assert platform.bulk_deleted == [(SOURCE_CHANNEL, [m.id for m in msgs])]
    assert len(locks) == 0

    assert len(spawned) == 1
    await spawned.drain()
    assert platform.deleted_webhooks


@pytest.mark.asyncio
async def test_source_as_destination_is_rejected_without_side_effects(platform, settings) -> None:
    msgs = _conversation(platform)
    locks = ChannelLockRegistry()
    run_dialog = _driver(
        ChannelSelected(DialogField.CHANNEL, SOURCE_CHANNEL),
        SubmitPressed(),
        StreamClosed(),
    )
    op = _operation(platform, settings, locks, msgs[0], run_dialog, _Spawned())

    with pytest.raises(MoveCancelled) as exc:
        await op.run()

    assert str(exc.value) == "Move cancelled."
    assert not MUTATING_CALLS & set(platform.call_names())
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_relay_failure_rolls_back_new_thread(platform, settings) -> None:
    msgs = _conversation(platform)
    platform.fail_webhook_after = 2
    locks = ChannelLockRegistry()
    spawned = _Spawned()
    op = _operation(platform, settings, locks, msgs[0], _driver(*NEW_THREAD_TEST), spawned)

    with pytest.raises(RelayFailure) as exc:
        await op.run()

    assert exc.value.failed_index == 2
    assert platform.deleted_channels == [op.destination.thread_id]
    assert len(platform.deleted_webhooks) == 1
    assert platform.bulk_deleted == []
    assert len(spawned) == 0
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_author_deletes_relayed_message_after_move(platform, settings) -> None:
    msgs = _conversation(platform)
    spawned = _Spawned()
    op = _operation(
        platform,
        settings,
        ChannelLockRegistry(),
        msgs[0],
        _driver(ChannelSelected(DialogField.CHANNEL, 2000), SubmitPressed()),
        spawned,
    )
    await op.run()

    first = platform.executed[0]["id"]
    platform.reaction_events = [
        ReactionEvent(message_id=first, channel_id=2000, user_id=1, emoji="❌", guild_id=GUILD)
    ]
    await spawned.drain()

    assert (2000, first) in platform.deleted_messages
    assert len(platform.deleted_webhooks) == 1


@pytest.mark.asyncio
async def test_busy_source_channel(platform, settings) -> None:
    msgs = _conversation(platform)
    locks = ChannelLockRegistry()
    held = locks.try_lock(SOURCE_CHANNEL)
    run_dialog = _driver(SubmitPressed())
    op = _operation(platform, settings, locks, msgs[0], run_dialog, _Spawned())

    with pytest.raises(ChannelBusy):
        await op.run()

    assert run_dialog.seen == []
    assert platform.calls == []
    held.release()


@pytest.mark.asyncio
async def test_busy_destination_discards_new_thread(platform, settings) -> None:
    msgs = _conversation(platform)
    locks = ChannelLockRegistry(poll_interval=settings.lock_poll_interval)
    op = _operation(platform, settings, locks, msgs[0], _driver(*NEW_THREAD_TEST), _Spawned())
    # The thread id the fake platform hands out next.
    next_id = platform.next_id() + 1
    held = locks.try_lock(next_id)

    with pytest.raises(ChannelBusy):
        await op.run()

    assert op.destination.thread_id == next_id
    assert platform.deleted_channels == [next_id]
    assert "execute_webhook" not in platform.call_names()
    assert not locks.is_locked(SOURCE_CHANNEL)
    held.release()


@pytest.mark.asyncio
async def test_no_messages_from_selected_users(platform, settings) -> None:
    msgs = _conversation(platform)
    run_dialog = _driver(*((UsersSelected((99,)),) + NEW_THREAD_TEST))
    op = _operation(platform, settings, ChannelLockRegistry(), msgs[0], run_dialog, _Spawned())

    with pytest.raises(MoveValidationError):
        await op.run()

    assert platform.deleted_channels == [op.destination.thread_id]
    assert "create_webhook" not in platform.call_names()


@pytest.mark.asyncio
async def test_selected_users_only_are_moved(platform, settings) -> None:
    msgs = _conversation(platform)
    run_dialog = _driver(
        UsersSelected((2,)), ChannelSelected(DialogField.CHANNEL, 2000), SubmitPressed()
    )
    spawned = _Spawned()
    op = _operation(platform, settings, ChannelLockRegistry(), msgs[0], run_dialog, spawned)
    await op.run()

    assert [e["username"] for e in platform.executed] == ["user2", "user2"]
    assert platform.bulk_deleted == [(SOURCE_CHANNEL, [msgs[1].id, msgs[3].id])]
    await spawned.drain()


@pytest.mark.asyncio
async def test_failed_source_cleanup_is_reported(platform, settings) -> None:
    msgs = _conversation(platform)
    platform.failures["delete_messages"] = PlatformError("Missing Permissions", status=403)
    spawned = _Spawned()
    op = _operation(
        platform,
        settings,
        ChannelLockRegistry(),
        msgs[0],
        _driver(ChannelSelected(DialogField.CHANNEL, 2000), SubmitPressed()),
        spawned,
    )

    with pytest.raises(MoveError, match="failed to delete the original messages"):
        await op.run()

    # The move itself happened, so corrections stay available.
    assert len(platform.executed) == 5
    assert len(spawned) == 1
    await spawned.drain()


@pytest.mark.asyncio
async def test_single_forum_is_preselected(platform, settings) -> None:
    msgs = _conversation(platform)
    platform.forums = [77]
    run_dialog = _driver(DestinationKindSelected("New Forum Post"), SubmitPressed())
    spawned = _Spawned()
    op = _operation(platform, settings, ChannelLockRegistry(), msgs[0], run_dialog, spawned)
    await op.run()

    assert op.dialog.default_forum == 77
    assert platform.created_posts == [(77, "Moved conversation", "Moved conversation")]
    await spawned.drain()


@pytest.mark.asyncio
async def test_empty_spawner_still_receives_listener(platform, settings) -> None:
    msgs = _conversation(platform)
    spawned = _Spawned()
    assert not spawned
    op = _operation(
        platform,
        settings,
        ChannelLockRegistry(),
        msgs[0],
        _driver(ChannelSelected(DialogField.CHANNEL, 2000), SubmitPressed()),
        spawned,
    )
    await op.run()

    assert op.spawn is spawned
    assert len(spawned) == 1
    await spawned.drain()


def test_elapsed_time_counts_from_invocation(platform, settings) -> None:
    from datetime import datetime, timedelta, timezone

    request = MoveRequest(
        guild_id=GUILD,
        source_channel_id=SOURCE_CHANNEL,
        start_message=make_message(0, 1),
        invoker_id=INVOKER,
        started_at=datetime.now(timezone.utc) - timedelta(seconds=3),
    )
    op = MoveOperation(platform, ChannelLockRegistry(), settings, request, _driver())
    assert 3000 <= op.elapsed_ms() < 60_000
