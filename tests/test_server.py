import json
import socket
import time

import pytest

from clusterchat.server import ChatServer, Connection, main


class FakeService:
    def __init__(self):
        self.calls = []
        self.closed = []

    def get_handler(self, msgid):
        def handler(conn, js, when):
            self.calls.append((msgid, js, when))
            conn.send(json.dumps({"echo": msgid}) + "\n")

        return handler

    def client_close_exception(self, conn):
        self.closed.append(conn)


class FakeConn:
    def __init__(self):
        self.sent = []
        self.shut = False
        self.name = "fake"

    def send(self, data):
        self.sent.append(data)

    def shutdown(self):
        self.shut = True


def make_server():
    service = FakeService()
    return ChatServer("127.0.0.1", 0, "ChatServer", service), service


def test_on_message_dispatches_parsed_json():
    server, service = make_server()
    conn = FakeConn()
    server.on_message(conn, b'{"msgid":4,"name":"x"}\0', 1.5)
    assert service.calls == [(4, {"msgid": 4, "name": "x"}, 1.5)]
    assert json.loads(conn.sent[0]) == {"echo": 4}


def test_on_message_accepts_text():
    server, service = make_server()
    server.on_message(FakeConn(), '{"msgid": 1, "id": 5}', 0)
    assert service.calls[0][1] == {"msgid": 1, "id": 5}


def test_on_message_invalid_json_raises():
    server, _ = make_server()
    with pytest.raises(ValueError):
        server.on_message(FakeConn(), b"not json", 0)


def test_on_message_non_object_raises():
    server, _ = make_server()
    with pytest.raises(ValueError):
        server.on_message(FakeConn(), b"[1, 2]", 0)


def test_on_connection_closed_notifies_service():
    server, service = make_server()
    conn = FakeConn()
    server.on_connection(conn, False)
    assert service.closed == [conn]
    assert conn.shut is True


def test_on_connection_open_does_not_notify(capsys):
    server, service = make_server()
    conn = FakeConn()
    server.on_connection(conn, True)
    assert service.closed == []
    assert "fake has connected." in capsys.readouterr().out


def test_connection_send_and_shutdown():
    a, b = socket.socketpair()
    try:
        conn = Connection(a, "pair")
        assert conn.name == "pair"
        conn.send("hello")
        conn.send(b"world")
        b.settimeout(2)
        received = b""
        while len(received) < 10:
            received += b.recv(64)
        assert received == b"helloworld"
        conn.shutdown()
        assert b.recv(64) == b""
    finally:
        a.close()
        b.close()


def _read_lines(sock, count):
    data = b""
    while data.count(b"\n") < count:
        chunk = sock.recv(4096)
        if not chunk:
            break
        data += chunk
    return [json.loads(line) for line in data.split(b"\n") if line]


def test_server_round_trip():
    server, service = make_server()
    server.start()
    try:
        client = socket.create_connection(("127.0.0.1", server.port), timeout=2)
        client.sendall(b'{"msgid":1,"id":5}\0{"msgid":6,"toid":2}\0')
        replies = _read_lines(client, 2)
        assert replies == [{"echo": 1}, {"echo": 6}]
        client.close()
        deadline = time.monotonic() + 2
        while not service.closed and time.monotonic() < deadline:
            time.sleep(0.02)
        assert len(service.closed) == 1
        assert [msgid for msgid, _, _ in service.calls] == [1, 6]
    finally:
        server.stop()


def test_start_twice_raises():
    server, _ = make_server()
    server.start()
    try:
        with pytest.raises(RuntimeError):
            server.start()
    finally:
        server.stop()


def test_main_without_arguments(capsys):
    assert main([]) == 1
    assert "command invalid!" in capsys.readouterr().err


def test_main_with_bad_port(capsys):
    assert main(["127.0.0.1", "abc"]) == 1
    assert "abc" in capsys.readouterr().err