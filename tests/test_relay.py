from __future__ import annotations

import pytest

from conftest import make_message
from mover.errors import RelayFailure
from mover.models import AttachmentRef, ResolvedDestination, WebhookHandle
from mover.relay import RelayEngine, split_content

WEBHOOK = WebhookHandle(id=42, token="tok", channel_id=2000)


def test_split_content_placeholder_and_chunks() -> None:
    assert split_content("") == ["_ _"]
    assert split_content("hi") == ["hi"]
    long = "a" * 4500
    chunks = split_content(long)
    assert [len(c) for c in chunks] == [2000, 2000, 500]
    assert "".join(chunks) == long


def test_split_content_prefers_line_breaks() -> None:
    text = "x" * 1500 + "\n" + "y" * 1000
    chunks = split_content(text)
    assert chunks[0] == "x" * 1500
    assert "".join(chunks) == text


@pytest.mark.asyncio
async def test_relay_impersonates_authors_in_order(platform) -> None:
    messages = [make_message(0, 1, content="hello"), make_message(5, 2, content="")]
    relayed = await RelayEngine(platform).relay(
        ResolvedDestination(channel_id=2000), WEBHOOK, messages
    )
    assert [e["username"] for e in platform.executed] == ["user1", "user2"]
    assert [e["content"] for e in platform.executed] == ["hello", "_ _"]
    assert [r.author_id for r in relayed] == [1, 2]
    assert all(e["thread_id"] is None for e in platform.executed)
    assert platform.deleted_webhooks == []


@pytest.mark.asyncio
async def test_relay_into_thread_passes_thread_id(platform) -> None:
    dest = ResolvedDestination(channel_id=2000, thread_id=3000)
    relayed = await RelayEngine(platform).relay(dest, WEBHOOK, [make_message(0, 1)])
    assert platform.executed[0]["thread_id"] == 3000
    assert relayed[0].thread_id == 3000


@pytest.mark.asyncio
async def test_unavailable_attachment_is_skipped(platform) -> None:
    platform.attachments["https://cdn.example/ok.png"] = b"png"
    msg = make_message(
        0,
        1,
        attachments=(
            AttachmentRef("https://cdn.example/ok.png", "ok.png"),
            AttachmentRef("https://cdn.example/gone.png", "gone.png"),
        ),
    )
    await RelayEngine(platform).relay(ResolvedDestination(channel_id=2000), WEBHOOK, [msg])
    files = platform.executed[0]["files"]
    assert [f.filename for f in files] == ["ok.png"]


@pytest.mark.asyncio
async def test_failure_in_existing_channel_deletes_relayed_messages(platform) -> None:
    platform.fail_webhook_after = 2
    messages = [make_message(i, 1) for i in range(4)]
    with pytest.raises(RelayFailure) as exc:
        await RelayEngine(platform).relay(
            ResolvedDestination(channel_id=2000), WEBHOOK, messages
        )
    assert exc.value.failed_index == 2
    assert exc.value.relayed_count == 2
    assert str(exc.value).startswith("failed to move messages:")
    relayed_ids = [e["id"] for e in platform.executed]
    assert platform.deleted_messages == [(2000, mid) for mid in relayed_ids]
    assert platform.deleted_webhooks == [42]
    assert platform.deleted_channels == []


@pytest.mark.asyncio
async def test_failure_in_new_thread_discards_the_thread(platform) -> None:
    platform.fail_webhook_after = 1
    dest = ResolvedDestination(channel_id=2000, thread_id=3000, newly_created=True)
    with pytest.raises(RelayFailure):
        await RelayEngine(platform).relay(dest, WEBHOOK, [make_message(i, 1) for i in range(3)])
    assert platform.deleted_channels == [3000]
    assert platform.deleted_messages == []
    assert platform.deleted_webhooks == [42]


@pytest.mark.asyncio
async def test_failed_discard_falls_back_to_deleting_messages(platform) -> None:
    from mover.errors import PlatformError

    platform.fail_webhook_after = 1
    platform.failures["delete_channel"] = PlatformError("Missing Permissions", status=403)
    dest = ResolvedDestination(channel_id=2000, thread_id=3000, newly_created=True)
    with pytest.raises(RelayFailure) as exc:
        await RelayEngine(platform).relay(dest, WEBHOOK, [make_message(i, 1) for i in range(3)])
    assert platform.deleted_messages == [(3000, platform.executed[0]["id"])]
    assert len(exc.value.rollback_errors) == 1


@pytest.mark.asyncio
async def test_partially_sent_long_message_is_rolled_back(platform) -> None:
    platform.fail_webhook_after = 1
    msg = make_message(0, 1, content="a" * 4500)
    with pytest.raises(RelayFailure) as exc:
        await RelayEngine(platform).relay(
            ResolvedDestination(channel_id=2000), WEBHOOK, [msg]
        )
    first_chunk = platform.executed[0]["id"]
    assert platform.deleted_messages == [(2000, first_chunk)]
    assert exc.value.failed_index == 0
    assert exc.value.relayed_count == 1


@pytest.mark.asyncio
async def test_partial_chunks_deleted_when_new_thread_cannot_be_discarded(platform) -> None:
    from mover.errors import PlatformError

    platform.fail_webhook_after = 2
    platform.failures["delete_channel"] = PlatformError("Missing Permissions", status=403)
    dest = ResolvedDestination(channel_id=2000, thread_id=3000, newly_created=True)
    messages = [make_message(0, 1), make_message(1, 2, content="b" * 4500)]
    with pytest.raises(RelayFailure):
        await RelayEngine(platform).relay(dest, WEBHOOK, messages)
    assert platform.deleted_messages == [(3000, e["id"]) for e in platform.executed]
    assert len(platform.deleted_messages) == 2


@pytest.mark.asyncio
async def test_chunks_remember_their_source_message(platform) -> None:
    msg = make_message(0, 1, content="c" * 2500)
    relayed = await RelayEngine(platform).relay(
        ResolvedDestination(channel_id=2000), WEBHOOK, [msg]
    )
    assert len(relayed) == 2
    assert {r.source_id for r in relayed} == {msg.id}


@pytest.mark.asyncio
async def test_unconfirmed_send_is_a_failure(platform) -> None:
    platform.unconfirmed_webhook = True
    with pytest.raises(RelayFailure) as exc:
        await RelayEngine(platform).relay(
            ResolvedDestination(channel_id=2000), WEBHOOK, [make_message(0, 1)]
        )
    assert "failed to wait for webhook message" in str(exc.value)
    assert platform.deleted_webhooks == [42]


@pytest.mark.asyncio
async def test_notice_names_initiator_and_participants(platform) -> None:
    await RelayEngine(platform).post_notice(
        ResolvedDestination(channel_id=2000),
        initiator_id=7,
        source_channel_id=1000,
        participants=[1, 2],
    )
    channel, text = platform.sent[0]
    assert channel == 2000
    assert text.startswith("<@7> moved the conversation from <#1000> to here.")
    assert text.endswith("Participants: <@1><@2>")


@pytest.mark.asyncio
async def test_notice_failure_is_not_fatal(platform) -> None:
    from mover.errors import PlatformError

    platform.failures["send_message"] = PlatformError("Missing Access", status=403)
    await RelayEngine(platform).post_notice(
        ResolvedDestination(channel_id=2000), initiator_id=7, source_channel_id=1000, participants=[]
    )
