import io
import json
import re
import socket
import threading
from datetime import datetime

import pytest

from clusterchat.client import COMMANDS, ChatClient, get_current_time, main, parse_command
from clusterchat.models import User
from clusterchat.protocol import MsgType

TIME_RE = r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}"


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    out, err = io.StringIO(), io.StringIO()
    client = ChatClient(a, out=out, err=err)
    yield client, b, out, err
    a.close()
    b.close()


def recv_frames(sock, count):
    sock.settimeout(2)
    data = b""
    while data.count(b"\0") < count:
        chunk = sock.recv(4096)
        if not chunk:
            break
        data += chunk
    return [json.loads(part) for part in data.split(b"\0") if part]


def test_get_current_time_round_trips():
    stamp = get_current_time()
    assert re.fullmatch(TIME_RE, stamp)
    parsed = datetime.strptime(stamp, "%Y-%m-%d %H:%M:%S")
    assert parsed.strftime("%Y-%m-%d %H:%M:%S") == stamp


def test_parse_command():
    assert parse_command("chat:5:hi") == ("chat", "5:hi")
    assert parse_command("help") == ("help", "help")
    assert parse_command("loginout:") == ("loginout", "")


def test_chat_sends_message(pair):
    client, peer, _, _ = pair
    client.current_user = User(7, "alice")
    client.chat("5:hello:there")
    (frame,) = recv_frames(peer, 1)
    assert frame["msgid"] == MsgType.ONE_CHAT_MSG
    assert frame["id"] == 7
    assert frame["name"] == "alice"
    assert frame["toid"] == 5
    assert frame["msg"] == "hello:there"
    assert re.fullmatch(TIME_RE, frame["time"])


def test_chat_without_colon_sends_nothing(pair):
    client, peer, _, err = pair
    client.chat("5")
    assert "chat command invalid!" in err.getvalue()
    peer.setblocking(False)
    with pytest.raises(BlockingIOError):
        peer.recv(16)


def test_group_commands(pair):
    client, peer, _, _ = pair
    client.current_user = User(7, "alice")
    client.creategroup("team:our team")
    client.addgroup("12abc")
    client.groupchat("12:hi all")
    created, added, chatted = recv_frames(peer, 3)
    assert created["msgid"] == MsgType.CREATE_GROUP_MSG
    assert (created["groupname"], created["groupdesc"]) == ("team", "our team")
    assert added["msgid"] == MsgType.ADD_GROUP_MSG
    assert added["groupid"] == 12
    assert chatted["msgid"] == MsgType.GROUP_CHAT_MSG
    assert (chatted["groupid"], chatted["msg"]) == (12, "hi all")


def test_addfriend(pair):
    client, peer, _, _ = pair
    client.current_user = User(7, "alice")
    client.addfriend(" 3")
    (frame,) = recv_frames(peer, 1)
    assert frame == {"msgid": int(MsgType.ADD_FRIEND_MSG), "id": 7, "friendid": 3}


def test_run_command_unknown(pair):
    client, _, _, err = pair
    assert client.run_command("dance:1") is False
    assert "invalid input command!" in err.getvalue()


def test_help_lists_commands_in_order(pair):
    client, _, out, _ = pair
    client.help()
    lines = out.getvalue().splitlines()
    assert lines[0] == "show command list >>> "
    assert [line.split(" : ")[0] for line in lines[1:-1]] == list(COMMANDS)


def test_loginout_leaves_menu(pair):
    client, peer, _, _ = pair
    client.current_user = User(7, "alice")
    client.is_main_menu_running = True
    client.loginout("")
    (frame,) = recv_frames(peer, 1)
    assert frame == {"msgid": int(MsgType.LOGINOUT_MSG), "id": 7}
    assert client.is_main_menu_running is False


def test_main_menu_stops_after_loginout(pair):
    client, peer, _, _ = pair
    client.current_user = User(7, "alice")
    client.is_main_menu_running = True
    client.main_menu(["addfriend:3\n", "loginout\n", "addfriend:4\n"])
    frames = recv_frames(peer, 2)
    assert [f["msgid"] for f in frames] == [MsgType.ADD_FRIEND_MSG, MsgType.LOGINOUT_MSG]
    peer.setblocking(False)
    with pytest.raises(BlockingIOError):
        peer.recv(16)


def test_do_login_response_success(pair):
    client, _, out, _ = pair
    response = {
        "msgid": int(MsgType.LOGIN_MSG_ACK),
        "errno": 0,
        "id": 7,
        "name": "alice",
        "friends": [json.dumps({"id": 8, "name": "bob", "state": "online"})],
        "groups": [
            json.dumps(
                {
                    "id": 3,
                    "groupname": "team",
                    "groupdesc": "desc",
                    "users": [
                        json.dumps({"id": 7, "name": "alice", "state": "online", "role": "creator"})
                    ],
                }
            )
        ],
        "offlinemsg": [
            json.dumps(
                {"msgid": int(MsgType.ONE_CHAT_MSG), "id": 8, "name": "bob",
                 "msg": "hi", "time": "2024-01-01 10:00:00"}
            )
        ],
    }
    client.do_login_response(response)
    assert client.login_success is True
    assert (client.current_user.id, client.current_user.name) == (7, "alice")
    assert [(f.id, f.name, f.state) for f in client.friends] == [(8, "bob", "online")]
    assert client.groups[0].name == "team"
    assert client.groups[0].users[0].role == "creator"
    text = out.getvalue()
    assert "current login user => id:7 name:alice" in text
    assert "2024-01-01 10:00:00 [8]bob said: hi" in text


def test_do_login_response_failure(pair):
    client, _, _, err = pair
    client.login_success = True
    client.do_login_response(
        {"msgid": int(MsgType.LOGIN_MSG_ACK), "errno": 2, "errmsg": "Password error"}
    )
    assert client.login_success is False
    assert "Password error" in err.getvalue()


def test_do_reg_response(pair):
    client, _, out, err = pair
    client.do_reg_response({"msgid": int(MsgType.REG_MSG_ACK), "errno": 0, "id": 21})
    client.do_reg_response({"msgid": int(MsgType.REG_MSG_ACK), "errno": 1})
    assert "name register success, userid is 21, do not forget it!" in out.getvalue()
    assert "name is already exist, register error!" in err.getvalue()


def test_login_round_trip_through_reader(pair):
    client, peer, _, _ = pair
    requests = []

    def responder():
        (request,) = recv_frames(peer, 1)
        requests.append(request)
        ack = {"msgid": int(MsgType.LOGIN_MSG_ACK), "errno": 0,
               "id": request["id"], "name": "alice"}
        peer.sendall(json.dumps(ack).encode())

    reader = threading.Thread(target=client.read_task, daemon=True)
    reader.start()
    server = threading.Thread(target=responder, daemon=True)
    server.start()
    password = "password"
    assert client.login(7, password) is True
    server.join(timeout=2)
    assert requests[0] == {"msgid": int(MsgType.LOGIN_MSG), "id": 7, "password": password}
    assert client.current_user.name == "alice"
    peer.close()
    reader.join(timeout=2)
    assert client.connected is False


def test_read_task_handles_concatenated_messages(pair):
    client, peer, out, _ = pair
    first = {"msgid": int(MsgType.ONE_CHAT_MSG), "id": 8, "name": "bob",
             "msg": "one", "time": "2024-01-01 10:00:00"}
    second = {"msgid": int(MsgType.GROUP_CHAT_MSG), "groupid": 3, "id": 8, "name": "bob",
              "msg": "two", "time": "2024-01-01 10:00:01"}
    peer.sendall((json.dumps(first) + json.dumps(second)).encode())
    peer.close()
    client.read_task()
    text = out.getvalue()
    assert "[8]bob said: one" in text
    assert "群消息[3]:2024-01-01 10:00:01 [8]bob said: two" in text
    assert client.connected is False


def test_main_without_arguments(capsys):
    assert main([]) == 1
    assert "command invalid!" in capsys.readouterr().err