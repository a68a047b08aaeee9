"""Interactive console client of the chat server."""

from __future__ import annotations

import codecs
import json
import re
import socket
import sys
import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, TextIO

from .models import Group, GroupUser, User
from .protocol import MsgType

COMMANDS: dict[str, str] = {
    "help": "显示所有支持的命令，格式help",
    "chat": "一对一聊天，格式chat:friendid:message",
    "addfriend": "添加好友，格式addfriend:friendid",
    "creategroup": "创建群组，格式creategroup:groupname:groupdesc",
    "addgroup": "加入群组，格式addgroup:groupid",
    "groupchat": "群聊，格式groupchat:groupid:message",
    "loginout": "注销，格式loginout",
}

_RECV_SIZE = 1024
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")


def get_current_time() -> str:
    """Return the local time as ``YYYY-MM-DD HH:MM:SS``."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def parse_command(line: str) -> tuple[str, str]:
    """Split ``command:args``; without a colon the whole line is both parts."""
    command, sep, rest = line.partition(":")
    if not sep:
        return line, line
    return command, rest


def _atoi(text: str) -> int:
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def _load(item: Any) -> Any:
    return json.loads(item) if isinstance(item, str) else item


def _split_messages(buffer: str) -> tuple[list[Any], str]:
    """Decode every complete JSON value in ``buffer``; return them and the rest."""
    decoder = json.JSONDecoder()
    messages: list[Any] = []
    pos = 0
    while True:
        while pos < len(buffer) and buffer[pos] in "\0 \t\r\n":
            pos += 1
        if pos >= len(buffer):
            return messages, ""
        try:
            obj, end = decoder.raw_decode(buffer, pos)
        except json.JSONDecodeError:
            return messages, buffer[pos:]
        messages.append(obj)
        pos = end


def _format_chat(js: dict) -> str:
    return f"{js['time']} [{js['id']}]{js['name']} said: {js['msg']}"


def _format_group_chat(js: dict) -> str:
    return f"群消息[{js['groupid']}]:{js['time']} [{js['id']}]{js['name']} said: {js['msg']}"


class ChatClient:
    """Client session: sends requests and shows what the server pushes back."""

    def __init__(
        self,
        sock: socket.socket,
        out: TextIO | None = None,
        err: TextIO | None = None,
    ) -> None:
        self.sock = sock
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr
        self.current_user = User()
        self.friends: list[User] = []
        self.groups: list[Group] = []
        self.is_main_menu_running = False
        self.login_success = False
        self.connected = True
        self._rwsem = threading.Semaphore(0)
        self._handlers: dict[str, Callable[[str], None]] = {
            "help": self.help,
            "chat": self.chat,
            "addfriend": self.addfriend,
            "creategroup": self.creategroup,
            "addgroup": self.addgroup,
            "groupchat": self.groupchat,
            "loginout": self.loginout,
        }

    def _say(self, text: str) -> None:
        print(text, file=self.out, flush=True)

    def _complain(self, text: str) -> None:
        print(text, file=self.err, flush=True)

    def send(self, js: dict) -> bool:
        """Send one NUL-terminated JSON request; return whether it went out."""
        data = json.dumps(js, ensure_ascii=False).encode("utf-8") + b"\0"
        try:
            self.sock.sendall(data)
        except OSError:
            return False
        return True

    def _post(self, js: dict, failure: str) -> bool:
        if self.send(js):
            return True
        self._complain(failure + json.dumps(js, ensure_ascii=False))
        return False

    def login(self, userid: int, password: str) -> bool:
        """Send a login request and wait for the answer; return whether it succeeded."""
        js = {"msgid": int(MsgType.LOGIN_MSG), "id": userid, "password": password}
        self.login_success = False
        if not self._post(js, "send login msg error:"):
            return False
        self._rwsem.acquire()
        return self.login_success

    def register(self, name: str, password: str) -> None:
        """Send a registration request and wait for the answer."""
        js = {"msgid": int(MsgType.REG_MSG), "name": name, "password": password}
        if self._post(js, "send reg msg error:"):
            self._rwsem.acquire()

    def handle_message(self, js: dict) -> None:
        """Show a pushed message or process the answer to a pending request."""
        msgtype = js["msgid"]
        if msgtype == MsgType.ONE_CHAT_MSG:
            self._say(_format_chat(js))
        elif msgtype == MsgType.GROUP_CHAT_MSG:
            self._say(_format_group_chat(js))
        elif msgtype == MsgType.LOGIN_MSG_ACK:
            try:
                self.do_login_response(js)
            finally:
                self._rwsem.release()
        elif msgtype == MsgType.REG_MSG_ACK:
            try:
                self.do_reg_response(js)
            finally:
                self._rwsem.release()

    def do_login_response(self, js: dict) -> None:
        """Record the logged-in user's data and show pending messages."""
        if js["errno"] != 0:
            self._complain(str(js.get("errmsg", "")))
            self.login_success = False
            return

        self.current_user = User(id=int(js["id"]), name=js["name"])

        if "friends" in js:
            self.friends = [
                User(id=int(f["id"]), name=f["name"], state=f["state"])
                for f in map(_load, js["friends"])
            ]

        if "groups" in js:
            groups = []
            for entry in map(_load, js["groups"]):
                group = Group(int(entry["id"]), entry["groupname"], entry["groupdesc"])
                group.users.extend(
                    GroupUser(id=int(u["id"]), name=u["name"], state=u["state"], role=u["role"])
                    for u in map(_load, entry["users"])
                )
                groups.append(group)
            self.groups = groups

        self.show_current_user_data()

        for message in map(_load, js.get("offlinemsg", [])):
            if message["msgid"] == MsgType.ONE_CHAT_MSG:
                self._say(_format_chat(message))
            else:
                self._say(_format_group_chat(message))

        self.login_success = True

    def do_reg_response(self, js: dict) -> None:
        """Report the outcome of a registration."""
        if js["errno"] != 0:
            self._complain("name is already exist, register error!")
        else:
            self._say(f"name register success, userid is {js['id']}, do not forget it!")

    def show_current_user_data(self) -> None:
        """Print the logged-in user, its friends and its groups."""
        self._say("======================login user======================")
        self._say(
            f"current login user => id:{self.current_user.id} name:{self.current_user.name}"
        )
        self._say("----------------------friend list---------------------")
        for friend in self.friends:
            self._say(f"{friend.id} {friend.name} {friend.state}")
        self._say("----------------------group list----------------------")
        for group in self.groups:
            self._say(f"{group.id} {group.name} {group.desc}")
            for member in group.users:
                self._say(f"{member.id} {member.name} {member.state} {member.role}")
        self._say("======================================================")

    def run_command(self, line: str) -> bool:
        """Run one menu command line; return whether the command was known."""
        command, args = parse_command(line)
        handler = self._handlers.get(command)
        if handler is None:
            self._complain("invalid input command!")
            return False
        handler(args)
        return True

    def main_menu(self, lines: Iterable[str]) -> None:
        """Run commands from ``lines`` until logged out or the input ends."""
        self.help()
        source: Iterator[str] = iter(lines)
        while self.is_main_menu_running:
            line = next(source, None)
            if line is None:
                break
            self.run_command(line.rstrip("\r\n"))

    def help(self, args: str = "") -> None:
        """List the supported commands."""
        self._say("show command list >>> ")
        for name, description in COMMANDS.items():
            self._say(f"{name} : {description}")
        self._say("")

    def chat(self, args: str) -> None:
        """Send ``friendid:message`` as a private message."""
        friend, sep, message = args.partition(":")
        if not sep:
            self._complain("chat command invalid!")
            return
        js = {
            "msgid": int(MsgType.ONE_CHAT_MSG),
            "id": self.current_user.id,
            "name": self.current_user.name,
            "toid": _atoi(friend),
            "msg": message,
            "time": get_current_time(),
        }
        self._post(js, "send chat msg error -> ")

    def addfriend(self, args: str) -> None:
        """Ask to add ``friendid`` as a friend."""
        js = {
            "msgid": int(MsgType.ADD_FRIEND_MSG),
            "id": self.current_user.id,
            "friendid": _atoi(args),
        }
        self._post(js, "send addfriend msg error -> ")

    def creategroup(self, args: str) -> None:
        """Create a group from ``groupname:groupdesc``."""
        name, sep, desc = args.partition(":")
        if not sep:
            self._complain("creategroup command invalid!")
            return
        js = {
            "msgid": int(MsgType.CREATE_GROUP_MSG),
            "id": self.current_user.id,
            "groupname": name,
            "groupdesc": desc,
        }
        self._post(js, "send creategroup msg error -> ")

    def addgroup(self, args: str) -> None:
        """Join the group ``groupid``."""
        js = {
            "msgid": int(MsgType.ADD_GROUP_MSG),
            "id": self.current_user.id,
            "groupid": _atoi(args),
        }
        self._post(js, "send addgroup msg error -> ")

    def groupchat(self, args: str) -> None:
        """Send ``groupid:message`` to a group."""
        group, sep, message = args.partition(":")
        if not sep:
            self._complain("groupchat command invalid!")
            return
        js = {
            "msgid": int(MsgType.GROUP_CHAT_MSG),
            "id": self.current_user.id,
            "name": self.current_user.name,
            "groupid": _atoi(group),
            "msg": message,
            "time": get_current_time(),
        }
        self._post(js, "send groupchat msg error -> ")

    def loginout(self, args: str = "") -> None:
        """Log out and leave the main menu."""
        js = {"msgid": int(MsgType.LOGINOUT_MSG), "id": self.current_user.id}
        if self._post(js, "send loginout msg error -> "):
            self.is_main_menu_running = False

    def read_task(self) -> None:
        """Receive and handle server messages until the connection closes."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            try:
                chunk = self.sock.recv(_RECV_SIZE)
            except OSError:
                chunk = b""
            if not chunk:
                break
            pending += decoder.decode(chunk)
            messages, pending = _split_messages(pending)
            for js in messages:
                try:
                    self.handle_message(js)
                except (KeyError, TypeError, ValueError) as exc:
                    self._complain(f"bad message from server: {exc}")
        self.connected = False
        try:
            self.sock.close()
        except OSError:
            pass
        self._rwsem.release()


def _stdin_lines() -> Iterator[str]:
    while True:
        try:
            yield input()
        except EOFError:
            return


def main(argv: list[str] | None = None) -> int:
    """Connect to the server at ``ip port`` and run the interactive menu."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 2:
        print("command invalid! example: chatclient 127.0.0.1 6000", file=sys.stderr)
        return 1
    ip, port = args[0], _atoi(args[1])
    try:
        sock = socket.create_connection((ip, port))
    except OSError:
        print("connect server error", file=sys.stderr)
        return 1

    client = ChatClient(sock)
    threading.Thread(target=client.read_task, name="chat-reader", daemon=True).start()
    lines = _stdin_lines()

    while client.connected:
        print("========================")
        print("1. login")
        print("2. register")
        print("3. quit")
        print("========================")
        print("choice:", end="", flush=True)
        line = next(lines, None)
        if line is None:
            break
        choice = _atoi(line)
        if choice == 1:
            print("userid:", end="", flush=True)
            userid = _atoi(next(lines, ""))
            print("userpassword:", end="", flush=True)
            password = next(lines, "")
            if client.login(userid, password):
                client.is_main_menu_running = True
                client.main_menu(lines)
        elif choice == 2:
            print("username:", end="", flush=True)
            name = next(lines, "")
            print("userpassword:", end="", flush=True)
            password = next(lines, "")
            client.register(name, password)
        elif choice == 3:
            break
        else:
            print("invalid input!", file=sys.stderr)

    disconnected = not client.connected
    try:
        sock.close()
    except OSError:
        pass
    return 1 if disconnected else 0