"""
Tests for ConnectionLifecycleHandler: identity assignment, the grace and
strict disconnect policies, reconnection and leaving a session.
"""

import asyncio

from hyperchess.enums import Color, EndReason, SessionStatus


def test_anonymous_connection_gets_an_identity(make_service, connect):
    async def scenario():
        service = make_service()

        channel = connect(service)
        await service.router.drain()

        identity = channel.last("connected")["identity"]
        assert identity.startswith("player_")
        assert len(identity) == len("player_") + 8
        assert service.router.is_connected(identity)

    asyncio.run(scenario())


def test_grace_disconnect_pauses_and_reverts_to_waiting(make_service, seated_pair, clock):
    async def scenario():
        service = make_service(RECONNECT_GRACE_PERIOD=60)
        session_id, alice, bob = await seated_pair(service)

        clock.advance(1_000)
        await service.disconnect("alice", alice)
        await service.router.drain()

        session = service.registry.get(session_id)
        assert session.status is SessionStatus.WAITING
        assert session.seats[Color.WHITE] == "alice"
        assert session.clock.running is False
        assert service.lifecycle.has_pending_grace(session_id, "alice")
        notice = bob.last("playerDisconnected")
        assert notice["color"] == "white"
        assert notice["graceMs"] == 60_000

        # Moves are refused while the seat is held open
        await service.handle_raw("bob", {"type": "submitMove", "sessionId": session_id, "move": "e7e5"})
        await service.router.drain()
        assert bob.last("error")["code"] == "InvalidOperation"

    asyncio.run(scenario())


def test_reconnect_within_grace_resumes_session(make_service, seated_pair, connect, clock):
    async def scenario():
        service = make_service(RECONNECT_GRACE_PERIOD=60, INITIAL_CLOCK_MS=60_000)
        session_id, alice, bob = await seated_pair(service)
        session = service.registry.get(session_id)

        await service.disconnect("alice", alice)
        clock.advance(20_000)

        alice_again = connect(service, "alice")
        await service.handle_raw("alice", {"type": "joinSession", "sessionId": session_id})
        await service.router.drain()

        assert session.status is SessionStatus.ACTIVE
        assert session.clock.running is True
        assert session.clock.white_ms == 60_000
        assert not service.lifecycle.has_pending_grace(session_id, "alice")
        assert alice_again.last("sessionJoined")["role"] == "white"
        assert bob.last("playerReconnected")["color"] == "white"
        assert alice.types().count("playerReconnected") == 0

        clock.advance(2_000)
        await service.handle_raw("alice", {"type": "submitMove", "sessionId": session_id, "move": "d4"})
        assert session.clock.white_ms == 58_000

    asyncio.run(scenario())


def test_grace_expiry_forfeits_to_opponent(make_service, seated_pair):
    async def scenario():
        service = make_service(RECONNECT_GRACE_PERIOD=0.05)
        session_id, alice, bob = await seated_pair(service)

        await service.disconnect("bob", bob)
        await asyncio.sleep(0.2)
        await service.router.drain()

        session = service.registry.get(session_id)
        assert session.status is SessionStatus.COMPLETED
        assert session.end_reason is EndReason.DISCONNECT
        assert session.winner is Color.WHITE
        assert alice.last("sessionEnded") == {
            "type": "sessionEnded",
            "sessionId": session_id,
            "reason": "disconnect",
            "winner": "white",
        }
        assert not service.lifecycle.has_pending_grace(session_id, "bob")

    asyncio.run(scenario())


def test_grace_expiry_without_opponent_releases_session(make_service, connect):
    async def scenario():
        service = make_service(RECONNECT_GRACE_PERIOD=0.05)
        alice = connect(service, "alice")
        session = service.registry.create("alice")

        await service.disconnect("alice", alice)
        assert service.registry.get(session.session_id) is session

        await asyncio.sleep(0.2)
        assert service.registry.get(session.session_id) is None

    asyncio.run(scenario())


def test_strict_policy_forfeits_immediately(make_service, seated_pair):
    async def scenario():
        service = make_service(DISCONNECT_POLICY="strict")
        session_id, alice, bob = await seated_pair(service)

        await service.disconnect("bob", bob)
        await service.router.drain()

        session = service.registry.get(session_id)
        assert session.end_reason is EndReason.DISCONNECT
        assert session.winner is Color.WHITE
        assert alice.last("sessionEnded")["reason"] == "disconnect"
        assert not service.lifecycle.has_pending_grace(session_id, "bob")

    asyncio.run(scenario())


def test_strict_policy_in_waiting_session_vacates_seat(make_service, connect):
    async def scenario():
        service = make_service(DISCONNECT_POLICY="strict")
        alice = connect(service, "alice")
        session = service.registry.create("alice")

        await service.disconnect("alice", alice)

        assert service.registry.get(session.session_id) is None

    asyncio.run(scenario())


def test_spectator_disconnect_updates_count(make_service, seated_pair, connect):
    async def scenario():
        service = make_service()
        session_id, alice, bob = await seated_pair(service)
        carol = connect(service, "carol")
        await service.handle_raw("carol", {"type": "joinSession", "sessionId": session_id})
        await service.router.drain()

        await service.disconnect("carol", carol)
        await service.router.drain()

        session = service.registry.get(session_id)
        assert session.spectators == []
        assert session.status is SessionStatus.ACTIVE
        assert alice.last("spectatorsUpdate")["count"] == 0
        assert "carol" not in service.router.members(session_id)

    asyncio.run(scenario())


def test_stale_channel_close_is_ignored(make_service, seated_pair, connect):
    async def scenario():
        service = make_service()
        session_id, alice, bob = await seated_pair(service)

        connect(service, "alice")
        await service.disconnect("alice", alice)

        session = service.registry.get(session_id)
        assert session.status is SessionStatus.ACTIVE
        assert service.router.is_connected("alice")
        assert not service.lifecycle.has_pending_grace(session_id, "alice")

    asyncio.run(scenario())


def test_leave_opens_seat_for_a_new_player(make_service, seated_pair, connect):
    async def scenario():
        service = make_service()
        session_id, alice, bob = await seated_pair(service)
        await service.handle_raw("alice", {"type": "submitMove", "sessionId": session_id, "move": "e4"})

        await service.handle_raw("bob", {"type": "leaveSession", "sessionId": session_id})
        await service.router.drain()

        session = service.registry.get(session_id)
        assert session.status is SessionStatus.WAITING
        assert session.seats[Color.BLACK] is None
        assert bob.types().count("seatVacated") == 1
        assert alice.last("seatVacated")["color"] == "black"
        assert service.router.members(session_id) == {"alice"}

        carol = connect(service, "carol")
        await service.handle_raw("carol", {"type": "joinSession", "sessionId": session_id})
        await service.router.drain()

        assert carol.last("sessionJoined")["role"] == "black"
        assert session.status is SessionStatus.ACTIVE
        assert session.move_history == ["e4"]

    asyncio.run(scenario())


def test_leave_by_outsider_is_forbidden(make_service, seated_pair, connect):
    async def scenario():
        service = make_service()
        session_id, alice, bob = await seated_pair(service)
        dave = connect(service, "dave")

        await service.handle_raw("dave", {"type": "leaveSession", "sessionId": session_id})
        await service.router.drain()

        assert dave.last("error")["code"] == "Forbidden"

    asyncio.run(scenario())


def test_session_removed_when_both_players_leave(make_service, seated_pair):
    async def scenario():
        service = make_service()
        session_id, alice, bob = await seated_pair(service)

        await service.handle_raw("alice", {"type": "leaveSession", "sessionId": session_id})
        await service.handle_raw("bob", {"type": "leaveSession", "sessionId": session_id})
        await service.router.drain()

        assert service.registry.get(session_id) is None
        assert session_id not in service.router.rooms
        assert bob.last("seatVacated")["color"] == "black"

    asyncio.run(scenario())


def test_connected_player_rejoining_does_not_resume_while_opponent_away(make_service, seated_pair, connect, clock):
    async def scenario():
        service = make_service(RECONNECT_GRACE_PERIOD=60, INITIAL_CLOCK_MS=60_000)
        session_id, alice, bob = await seated_pair(service)
        session = service.registry.get(session_id)

        await service.disconnect("bob", bob)
        await service.handle_raw("alice", {"type": "joinSession", "sessionId": session_id})
        clock.advance(10_000)
        await service.clock_manager.tick_sessions(service.registry, service.router)
        await service.handle_raw("alice", {"type": "submitMove", "sessionId": session_id, "move": "e4"})
        await service.router.drain()

        assert session.status is SessionStatus.WAITING
        assert session.clock.running is False
        assert session.clock.white_ms == 60_000
        assert session.move_history == []
        assert service.lifecycle.has_pending_grace(session_id, "bob")
        assert alice.last("error")["code"] == "InvalidOperation"

        # Play resumes once the absent player is back
        connect(service, "bob")
        await service.handle_raw("bob", {"type": "joinSession", "sessionId": session_id})
        await service.router.drain()

        assert session.status is SessionStatus.ACTIVE
        assert session.clock.running is True
        assert alice.last("playerReconnected")["color"] == "black"

    asyncio.run(scenario())


def test_newcomer_waits_for_creator_inside_grace_window(make_service, connect, clock):
    async def scenario():
        service = make_service(RECONNECT_GRACE_PERIOD=60)
        alice = connect(service, "alice")
        session = service.registry.create("alice")

        await service.disconnect("alice", alice)
        carol = connect(service, "carol")
        await service.handle_raw("carol", {"type": "joinSession", "sessionId": session.session_id})
        await service.router.drain()

        assert carol.last("sessionJoined")["role"] == "black"
        assert session.seats_filled
        assert session.status is SessionStatus.WAITING
        assert session.clock.started is False

        clock.advance(5_000)
        connect(service, "alice")
        await service.handle_raw("alice", {"type": "joinSession", "sessionId": session.session_id})
        await service.router.drain()

        assert session.status is SessionStatus.ACTIVE
        assert session.clock.started is True
        assert session.clock.last_tick_at == clock()
        assert carol.last("playerReconnected")["color"] == "white"

    asyncio.run(scenario())
