"""Tests for join / send / typing / leave routing."""
import asyncio

import pytest

from secretchat.core.errors import InvalidInput, NotJoined, RoomNotFound


async def join(relay, room_id, connection_id, handle, username=None):
    return await relay.broker.join(room_id, connection_id, handle, username)


# ----------------------------------------------------------------------
# Join
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_first_joiner_becomes_host_and_stays_host(relay, recording_handle):
    room = relay.registry.create_room()
    alice, bob = recording_handle(), recording_handle()

    await join(relay, room.id, "a", alice, "alice")
    await join(relay, room.id, "b", bob, "bob")

    assert room.host_connection_id == "a"
    assert alice.of_type("room-joined")[0]["isHost"] is True
    assert bob.of_type("room-joined")[0]["isHost"] is False
    assert room.participants == {"a", "b"}


@pytest.mark.asyncio
async def test_concurrent_first_joins_elect_a_single_host(relay, recording_handle):
    room = relay.registry.create_room()
    handles = [recording_handle() for _ in range(5)]

    await asyncio.gather(*(join(relay, room.id, f"c{i}", h) for i, h in enumerate(handles)))

    hosts = [h for h in handles if h.of_type("room-joined")[0]["isHost"]]
    assert len(hosts) == 1
    assert room.participant_count == 5


@pytest.mark.asyncio
async def test_join_acknowledgment_and_user_joined_broadcast(relay, recording_handle):
    room = relay.registry.create_room(name="Secret")
    alice, bob = recording_handle(), recording_handle()

    await join(relay, room.id, "a", alice, "alice")
    await join(relay, room.id, "b", bob, "bob")

    ack = bob.of_type("room-joined")[0]
    assert ack["roomId"] == room.id
    assert ack["roomName"] == "Secret"
    assert ack["participantCount"] == 2
    assert ack["messages"] == []

    joined = alice.of_type("user-joined")
    assert joined == [{
        "type": "user-joined",
        "username": "bob",
        "participantCount": 2,
        "message": "bob joined the chat",
    }]
    # The joiner is not told about itself
    assert bob.of_type("user-joined") == []


@pytest.mark.asyncio
async def test_join_defaults_username_to_anonymous(relay, recording_handle):
    room = relay.registry.create_room()
    alice, anon = recording_handle(), recording_handle()
    await join(relay, room.id, "a", alice, "alice")
    await join(relay, room.id, "b", anon)

    assert alice.of_type("user-joined")[0]["username"] == "Anonymous"


@pytest.mark.asyncio
async def test_join_unknown_room(relay, recording_handle):
    with pytest.raises(RoomNotFound):
        await join(relay, "missing", "a", recording_handle())
    with pytest.raises(InvalidInput):
        await join(relay, "", "a", recording_handle())


@pytest.mark.asyncio
async def test_initial_message_sent_once_as_host(relay, recording_handle):
    room = relay.registry.create_room(initial_message="hi")
    host, guest = recording_handle(), recording_handle()

    await join(relay, room.id, "host", host)
    await join(relay, room.id, "guest", guest)
    await asyncio.sleep(0.15)

    # Rejoining as host does not deliver it again
    await relay.broker.leave(room.id, "host")
    await join(relay, room.id, "host", host)
    await asyncio.sleep(0.15)

    initial = [e for e in guest.of_type("new-message") if e["text"] == "hi"]
    assert len(initial) == 1
    assert initial[0]["username"] == "Host"
    assert initial[0]["userId"] is None
    assert [m.text for m in room.messages] == ["hi"]


@pytest.mark.asyncio
async def test_initial_message_follows_join_acknowledgment(relay, recording_handle):
    room = relay.registry.create_room(initial_message="welcome")
    host = recording_handle()

    await join(relay, room.id, "host", host)
    assert host.of_type("new-message") == []

    await asyncio.sleep(0.15)
    types = [e["type"] for e in host.events]
    assert types.index("room-joined") < types.index("new-message")


# ----------------------------------------------------------------------
# Send
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_hello_delivered_exactly_once_to_both(relay, recording_handle):
    room = relay.registry.create_room()
    alice, bob = recording_handle(), recording_handle()
    await join(relay, room.id, "a", alice, "alice")
    await join(relay, room.id, "b", bob, "bob")

    await relay.broker.send_message(room.id, "a", "hello")

    for handle in (alice, bob):
        hellos = [e for e in handle.of_type("new-message") if e["text"] == "hello"]
        assert len(hellos) == 1
        assert hellos[0]["username"] == "alice"
        assert hellos[0]["userId"] == "a"
        assert hellos[0]["status"] == "sent"


@pytest.mark.asyncio
async def test_message_id_from_client_or_generated(relay, recording_handle):
    room = relay.registry.create_room()
    await join(relay, room.id, "a", recording_handle())

    supplied = await relay.broker.send_message(room.id, "a", "one", client_message_id="client-1")
    generated = [await relay.broker.send_message(room.id, "a", f"msg {i}") for i in range(20)]

    assert supplied.id == "client-1"
    ids = [m.id for m in room.messages]
    assert len(set(ids)) == len(ids) == 21
    assert all(m.id != "client-1" for m in generated)


@pytest.mark.asyncio
async def test_resending_same_client_id_is_idempotent(relay, recording_handle):
    room = relay.registry.create_room()
    alice = recording_handle()
    await join(relay, room.id, "a", alice)

    first = await relay.broker.send_message(room.id, "a", "hello", client_message_id="dup")
    second = await relay.broker.send_message(room.id, "a", "hello", client_message_id="dup")

    assert first is second
    assert len(room.messages) == 1
    assert len(alice.of_type("new-message")) == 1


@pytest.mark.asyncio
async def test_message_text_is_not_transformed(relay, recording_handle):
    room = relay.registry.create_room()
    alice = recording_handle()
    await join(relay, room.id, "a", alice)

    text = "  <b>spaces</b> & émoji 🙂  "
    await relay.broker.send_message(room.id, "a", text)

    assert room.messages[-1].text == text
    assert alice.of_type("new-message")[0]["text"] == text


@pytest.mark.asyncio
async def test_status_updates_are_monotonic_and_seen_by_everyone(relay, recording_handle):
    room = relay.registry.create_room()
    alice, bob = recording_handle(), recording_handle()
    await join(relay, room.id, "a", alice)
    await join(relay, room.id, "b", bob)

    message = await relay.broker.send_message(room.id, "a", "hello")
    await asyncio.sleep(0.25)

    for handle in (alice, bob):
        updates = [e for e in handle.of_type("message-status-update") if e["messageId"] == message.id]
        assert [u["status"] for u in updates] == ["delivered", "read"]
    assert room.messages[-1].status.value == "read"


@pytest.mark.asyncio
async def test_cancelled_status_timers_never_fire(relay, recording_handle):
    room = relay.registry.create_room()
    alice = recording_handle()
    await join(relay, room.id, "a", alice)

    message = await relay.broker.send_message(room.id, "a", "hello")
    assert relay.broker.cancel_message_timers(room.id, message.id) == 2
    await asyncio.sleep(0.2)

    assert alice.of_type("message-status-update") == []
    assert message.status.value == "sent"


@pytest.mark.asyncio
async def test_backlog_replay_includes_sent_message(relay, recording_handle):
    room = relay.registry.create_room()
    await join(relay, room.id, "a", recording_handle())
    sent = await relay.broker.send_message(room.id, "a", "remember me", client_message_id="m-1")

    late = recording_handle()
    await join(relay, room.id, "late", late)

    backlog = late.of_type("room-joined")[0]["messages"]
    assert backlog[-1]["id"] == sent.id == "m-1"
    assert backlog[-1]["text"] == "remember me"


@pytest.mark.asyncio
async def test_backlog_is_limited_to_last_fifty(relay, recording_handle):
    room = relay.registry.create_room()
    await join(relay, room.id, "a", recording_handle())
    for i in range(55):
        await relay.broker.send_message(room.id, "a", f"m{i}")

    late = recording_handle()
    await join(relay, room.id, "late", late)

    backlog = late.of_type("room-joined")[0]["messages"]
    assert len(backlog) == 50
    assert backlog[0]["text"] == "m5"
    assert backlog[-1]["text"] == "m54"


@pytest.mark.asyncio
async def test_send_errors(relay, recording_handle):
    room = relay.registry.create_room()
    other = relay.registry.create_room()
    await join(relay, room.id, "a", recording_handle())

    with pytest.raises(InvalidInput):
        await relay.broker.send_message(room.id, "a", "   ")
    with pytest.raises(InvalidInput):
        await relay.broker.send_message(room.id, "a", None)
    with pytest.raises(InvalidInput):
        await relay.broker.send_message("", "a", "hi")
    with pytest.raises(RoomNotFound):
        await relay.broker.send_message("missing", "a", "hi")
    with pytest.raises(NotJoined):
        await relay.broker.send_message(other.id, "a", "hi")
    with pytest.raises(NotJoined):
        await relay.broker.send_message(room.id, "stranger", "hi")

    assert room.messages == []


# ----------------------------------------------------------------------
# Typing
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_typing_goes_to_others_only(relay, recording_handle):
    room = relay.registry.create_room()
    alice, bob = recording_handle(), recording_handle()
    await join(relay, room.id, "a", alice, "alice")
    await join(relay, room.id, "b", bob, "bob")

    await relay.broker.typing(room.id, "a", True)
    await relay.broker.typing(room.id, "a", False)

    assert alice.of_type("user-typing") == []
    assert bob.of_type("user-typing") == [
        {"type": "user-typing", "username": "alice", "typing": True},
        {"type": "user-typing", "username": "alice", "typing": False},
    ]
    assert room.messages == []


@pytest.mark.asyncio
async def test_typing_requires_membership(relay):
    room = relay.registry.create_room()
    with pytest.raises(NotJoined):
        await relay.broker.typing(room.id, "stranger", True)
    with pytest.raises(RoomNotFound):
        await relay.broker.typing("missing", "stranger", True)


# ----------------------------------------------------------------------
# Leave
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_leave_notifies_remaining_participants(relay, recording_handle):
    room = relay.registry.create_room()
    alice, bob = recording_handle(), recording_handle()
    await join(relay, room.id, "a", alice, "alice")
    await join(relay, room.id, "b", bob, "bob")

    assert await relay.broker.leave(room.id, "b") is False

    assert alice.of_type("user-left") == [{
        "type": "user-left",
        "username": "bob",
        "userId": "b",
        "participantCount": 1,
        "message": "bob left the chat",
    }]
    assert room.participants == {"a"}
    assert not relay.connections.is_registered(room.id, "b")
    assert not relay.reaper.pending(room.id)


@pytest.mark.asyncio
async def test_last_leave_schedules_reap(relay, recording_handle):
    room = relay.registry.create_room()
    await join(relay, room.id, "a", recording_handle())

    assert await relay.broker.leave(room.id, "a") is True
    assert room.participant_count == 0
    assert relay.reaper.pending(room.id)


@pytest.mark.asyncio
async def test_leave_is_a_noop_for_strangers(relay):
    room = relay.registry.create_room()
    assert await relay.broker.leave(room.id, "stranger") is False
    assert await relay.broker.leave("missing", "stranger") is False
    assert not relay.reaper.pending(room.id)


@pytest.mark.asyncio
async def test_dead_participant_is_treated_as_leaving(relay, recording_handle, dead_handle):
    room = relay.registry.create_room()
    alice = recording_handle()
    await join(relay, room.id, "a", alice, "alice")
    await join(relay, room.id, "b", dead_handle(), "bob")

    await relay.broker.send_message(room.id, "a", "anyone there?")

    assert room.participants == {"a"}
    assert alice.of_type("user-left")[0]["username"] == "bob"
    assert len([e for e in alice.of_type("new-message") if e["text"] == "anyone there?"]) == 1


@pytest.mark.asyncio
async def test_joiner_with_dead_channel_is_never_announced(relay, recording_handle, dead_handle):
    room = relay.registry.create_room()
    alice = recording_handle()
    await join(relay, room.id, "a", alice, "alice")
    await join(relay, room.id, "b", dead_handle(), "bob")

    assert room.participants == {"a"}
    assert alice.of_type("user-joined") == []
    seen = [(e["type"], e["participantCount"]) for e in alice.events if e["type"] in ("user-joined", "user-left")]
    assert seen == [("user-left", 1)]


@pytest.mark.asyncio
async def test_host_with_dead_channel_keeps_initial_message(relay, recording_handle, dead_handle):
    room = relay.registry.create_room(initial_message="welcome")
    await join(relay, room.id, "h", dead_handle(), "host")
    assert room.initial_message == "welcome"

    host = recording_handle()
    await join(relay, room.id, "h", host, "host")
    await asyncio.sleep(0.1)
    assert [e["text"] for e in host.of_type("new-message")] == ["welcome"]


@pytest.mark.asyncio
async def test_repeated_join_is_acknowledged_without_announcing(relay, recording_handle):
    room = relay.registry.create_room()
    alice, bob = recording_handle(), recording_handle()
    await join(relay, room.id, "a", alice, "alice")
    await join(relay, room.id, "b", bob, "bob")
    await join(relay, room.id, "b", bob, "bob")

    assert len(bob.of_type("room-joined")) == 2
    assert bob.of_type("room-joined")[1]["participantCount"] == 2
    assert len(alice.of_type("user-joined")) == 1


@pytest.mark.asyncio
async def test_leave_soon_skips_connection_that_reconnected(relay, recording_handle):
    room = relay.registry.create_room()
    old_stream, new_stream = recording_handle(), recording_handle()
    await join(relay, room.id, "user_1", old_stream)
    await join(relay, room.id, "user_1", new_stream)

    relay.broker.leave_soon(room.id, "user_1", old_stream)
    await asyncio.sleep(0.02)
    assert room.participants == {"user_1"}

    relay.broker.leave_soon(room.id, "user_1", new_stream)
    await asyncio.sleep(0.02)
    assert room.participants == set()
