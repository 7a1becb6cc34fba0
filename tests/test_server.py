import pytest
from fastapi.testclient import TestClient

from duet.duet_server import create_app


@pytest.fixture
def client():
    with TestClient(create_app()) as client:
        yield client


def _open(client):
    return client.websocket_connect("/ws")


def _expect(ws, kind, **fields):
    message = ws.receive_json()
    assert message["type"] == kind, message
    for key, value in fields.items():
        assert message[key] == value, message
    return message


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_stats_start_empty(client):
    assert client.get("/api/stats").json() == {"online": 0, "rooms": 0, "waiting": 0}


def test_full_handshake(client):
    with _open(client) as a:
        _expect(a, "welcome")
        _expect(a, "online-count", count=1)

        a.send_json({"type": "join", "displayName": "alice"})
        joined = _expect(a, "joined")
        assert [m["displayName"] for m in joined["room"]["members"]] == ["alice"]
        _expect(a, "room", room=joined["room"])
        _expect(a, "online-count", count=1)
        room_id = joined["room"]["roomId"]

        with _open(client) as b:
            _expect(b, "welcome")
            _expect(b, "online-count", count=2)
            _expect(a, "online-count", count=2)

            b.send_json({"type": "join", "displayName": "bob"})
            joined_b = _expect(b, "joined")
            assert joined_b["room"]["roomId"] == room_id
            _expect(b, "room")
            _expect(b, "online-count", count=2)
            room = _expect(a, "room")["room"]
            assert [m["displayName"] for m in room["members"]] == ["alice", "bob"]
            _expect(a, "online-count", count=2)

            assert client.get("/api/stats").json() == {"online": 2, "rooms": 1, "waiting": 0}

            b.send_json({"type": "prepare", "room": joined_b["room"]})
            prepared = _expect(a, "prepared")["room"]
            assert [m["role"] for m in prepared["members"]] == ["host", "guest"]

            a.send_json({"type": "ready", "roomId": room_id})
            _expect(b, "ready")

            offer = {"type": "offer", "sdp": "v=0\r\n"}
            a.send_json({"type": "offer", "payload": offer, "roomId": room_id})
            _expect(b, "offer", payload=offer)

            b.send_json({"type": "answer", "payload": {"type": "answer", "sdp": "v=0"}, "roomId": room_id})
            _expect(a, "answer", payload={"type": "answer", "sdp": "v=0"})

            candidate = {"candidate": "candidate:0 1 UDP 2122252543 10.0.0.2 50000 typ host", "sdpMid": "0"}
            a.send_json({"type": "ice-candidate", "payload": candidate, "roomId": room_id})
            _expect(b, "ice-candidate", payload=candidate)

        peer_left = _expect(a, "peer-left")["peer"]
        assert peer_left["displayName"] == "bob"
        assert peer_left["roomId"] is None
        _expect(a, "online-count", count=1)

        assert client.get("/api/stats").json() == {"online": 1, "rooms": 1, "waiting": 1}


def test_voluntary_leave(client):
    with _open(client) as a, _open(client) as b:
        _expect(a, "welcome")
        _expect(a, "online-count", count=1)
        _expect(a, "online-count", count=2)
        _expect(b, "welcome")
        _expect(b, "online-count", count=2)

        a.send_json({"type": "join", "displayName": "alice"})
        room_id = _expect(a, "joined")["room"]["roomId"]
        _expect(a, "room")
        _expect(a, "online-count")
        _expect(b, "online-count")

        b.send_json({"type": "join", "displayName": "bob"})
        _expect(b, "joined")
        _expect(b, "room")
        _expect(b, "online-count")
        _expect(a, "room")
        _expect(a, "online-count")

        b.send_json({"type": "leave", "roomId": room_id, "displayName": "bob"})
        _expect(a, "left")
        _expect(a, "online-count", count=1)
        _expect(b, "online-count", count=1)

        # bob is out of the group now, so get-room only reaches alice
        a.send_json({"type": "get-room", "roomId": room_id})
        room = _expect(a, "room")["room"]
        assert [m["displayName"] for m in room["members"]] == ["alice"]


def test_bad_frames_get_an_error_and_keep_the_connection(client):
    with _open(client) as a:
        _expect(a, "welcome")
        _expect(a, "online-count")

        a.send_text("not json")
        _expect(a, "error", message="INVALID_MESSAGE")

        a.send_json(["join"])
        _expect(a, "error", message="INVALID_MESSAGE")

        a.send_json({"type": "start-call"})
        _expect(a, "error", message="UNKNOWN_EVENT")

        a.send_json({"type": "offer", "payload": {}})
        _expect(a, "error", message="INVALID_MESSAGE")

        a.send_json({"type": "join", "displayName": "alice"})
        _expect(a, "joined")


def test_queries_for_missing_rooms_are_silent(client):
    with _open(client) as a:
        _expect(a, "welcome")
        _expect(a, "online-count")

        a.send_json({"type": "get-room", "roomId": "missing"})
        a.send_json({"type": "get-room", "roomId": "missing"})
        a.send_json({"type": "ready", "roomId": "missing"})
        a.send_json({"type": "prepare", "room": {"roomId": "missing", "members": []}})
        a.send_json({"type": "offer", "payload": {"sdp": ""}, "roomId": "missing"})

        # the next frame a sees is the reply to its join, nothing from the queries above
        a.send_json({"type": "join", "displayName": "alice"})
        _expect(a, "joined")
        assert client.get("/api/stats").json() == {"online": 1, "rooms": 1, "waiting": 1}


def test_closing_a_socket_updates_the_survivor(client):
    with _open(client) as a:
        _expect(a, "welcome")
        _expect(a, "online-count", count=1)
        a.send_json({"type": "join", "displayName": "alice"})
        _expect(a, "joined")
        _expect(a, "room")
        _expect(a, "online-count", count=1)

        with _open(client) as b:
            _expect(b, "welcome")
            _expect(a, "online-count", count=2)
            b.send_json({"type": "join", "displayName": "bob"})
            _expect(b, "joined")
            _expect(a, "room")
            _expect(a, "online-count", count=2)

        _expect(a, "peer-left")
        _expect(a, "online-count", count=1)
        assert client.get("/api/stats").json()["online"] == 1

        # the departed peer's slot is free again for the next joiner
        with _open(client) as c:
            _expect(c, "welcome")
            _expect(c, "online-count", count=2)
            c.send_json({"type": "join", "displayName": "carol"})
            members = _expect(c, "joined")["room"]["members"]
            assert [m["displayName"] for m in members] == ["alice", "carol"]
