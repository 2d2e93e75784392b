import pytest

from yahtzee.game.errors import RoomNotFound
from yahtzee.game.models import ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH
from yahtzee.game.registry import RoomRegistry, normalize_code
from yahtzee.realtime import events as ev


def test_room_codes_use_the_unambiguous_alphabet(registry):
    for _ in range(20):
        room, _ = registry.create_room('Alice')
        assert len(room.code) == ROOM_CODE_LENGTH
        assert set(room.code) <= set(ROOM_CODE_ALPHABET)
    assert len(registry) == 20


def test_colliding_codes_are_regenerated():
    codes = iter(['AAAAAA', 'AAAAAA', 'AAAAAA', 'BBBBBB'])
    registry = RoomRegistry(code_factory=lambda: next(codes))

    first, _ = registry.create_room('Alice')
    second, _ = registry.create_room('Bob')

    assert first.code == 'AAAAAA'
    assert second.code == 'BBBBBB'
    assert registry.get_room('AAAAAA') is first


def test_lookup_ignores_case_and_whitespace(registry):
    room, _ = registry.create_room('Alice')

    assert normalize_code(f'  {room.code.lower()} ') == room.code
    assert registry.get_room(room.code.lower()) is room
    assert room.code.lower() in registry


@pytest.mark.parametrize('code', ['', None, 'ZZZZZZ'])
def test_unknown_code_raises_not_found(registry, code):
    with pytest.raises(RoomNotFound) as excinfo:
        registry.get_room(code)
    assert excinfo.value.status == 404


def test_delete_room_is_idempotent(registry):
    room, _ = registry.create_room('Alice')

    assert registry.delete_room(room.code) is True
    assert registry.delete_room(room.code) is False
    assert registry.list_rooms() == []


def test_sweep_evicts_only_idle_rooms_and_closes_their_connections(registry, open_session):
    stale, stale_host = registry.create_room('Alice')
    _, guest = registry.join_room(stale.code, 'Bob')
    fresh, _ = registry.create_room('Cara')
    sessions = [open_session(stale, stale_host.player_id), open_session(stale, guest.player_id)]

    stale.last_activity_ms -= 31 * 60 * 1000

    removed = registry.sweep(idle_timeout_sec=30 * 60)

    assert removed == [stale.code]
    assert stale.code not in registry
    assert fresh.code in registry
    assert stale.closed
    for session in sessions:
        assert session.connection.closed
        assert session.connection.of_type(ev.ROOM_ENDED) == [
            {'type': ev.ROOM_ENDED, 'reason': ev.ROOM_ENDED_IDLE}
        ]
    # the disconnect policy found the room already closed
    assert sessions[0].connection.of_type(ev.PLAYER_LEFT) == []


def test_activity_keeps_a_room_alive(registry, act):
    room, host = registry.create_room('Alice')
    room.last_activity_ms -= 31 * 60 * 1000

    act(room, host.player_id, ev.CHAT_MESSAGE, text='still here')

    assert registry.sweep(idle_timeout_sec=30 * 60) == []
    assert room.code in registry


def test_run_sweeper_survives_a_failing_sweep(registry, monkeypatch):
    calls = []

    def flaky_sweep(idle_timeout_sec):
        calls.append(idle_timeout_sec)
        if len(calls) == 1:
            raise RuntimeError('boom')

    class Stop(Exception):
        pass

    def sleep(seconds):
        if len(calls) >= 2:
            raise Stop()

    monkeypatch.setattr(registry, 'sweep', flaky_sweep)

    with pytest.raises(Stop):
        registry.run_sweeper(sleep, idle_timeout_sec=60, interval_sec=1)
    assert calls == [60, 60]
