"""Business logic of the chat server: dispatches each message type to its handler."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Protocol

from .models import Group, User
from .protocol import MsgType
from .redisbus import Redis
from .stores import FriendModel, GroupModel, OfflineMsgModel, UserModel

log = logging.getLogger(__name__)


class Connection(Protocol):
    def send(self, data: str) -> None: ...


MsgHandler = Callable[[Any, dict, Any], None]


def _dump(js: dict) -> str:
    return json.dumps(js, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


class ChatService:
    """Handles logins, chats, friends and groups for the connections of one server."""

    def __init__(
        self,
        user_model: UserModel | None = None,
        offline_model: OfflineMsgModel | None = None,
        friend_model: FriendModel | None = None,
        group_model: GroupModel | None = None,
        redis: Redis | None = None,
    ) -> None:
        self._user_model = user_model if user_model is not None else UserModel()
        self._offline_model = offline_model if offline_model is not None else OfflineMsgModel()
        self._friend_model = friend_model if friend_model is not None else FriendModel()
        self._group_model = group_model if group_model is not None else GroupModel()
        self._redis = redis if redis is not None else Redis()

        self._handlers: dict[int, MsgHandler] = {
            MsgType.LOGIN_MSG: self.login,
            MsgType.LOGINOUT_MSG: self.loginout,
            MsgType.REG_MSG: self.reg,
            MsgType.ONE_CHAT_MSG: self.one_chat,
            MsgType.ADD_FRIEND_MSG: self.add_friend,
            MsgType.CREATE_GROUP_MSG: self.create_group,
            MsgType.ADD_GROUP_MSG: self.add_group,
            MsgType.GROUP_CHAT_MSG: self.group_chat,
        }
        self._user_conns: dict[int, Connection] = {}
        self._conn_lock = threading.Lock()

        if self._redis.connect():
            self._redis.init_notify_handler(self.handle_redis_subscribe_message)

    def get_handler(self, msgid: int) -> MsgHandler:
        """Return the handler for ``msgid``; unknown ids get one that only logs."""
        handler = self._handlers.get(msgid)
        if handler is not None:
            return handler

        def _unknown(conn: Any, js: dict, time: Any) -> None:
            log.error("msgid:%s can not find handler!", msgid)

        return _unknown

    def login(self, conn: Connection, js: dict, time: Any) -> None:
        """Check the credentials and answer with the user's data and pending messages."""
        userid = int(js["id"])
        password = js["password"]
        user = self._user_model.query(userid)
        ack = int(MsgType.LOGIN_MSG_ACK)

        if user.id == -1:
            conn.send(_dump({"msgid": ack, "errno": 1, "errmsg": "User not found"}))
            return
        if user.password != password:
            conn.send(_dump({"msgid": ack, "errno": 2, "errmsg": "Password error"}))
            return
        if user.state == "online":
            conn.send(_dump({"msgid": ack, "errno": 3, "errmsg": "User already online"}))
            return

        with self._conn_lock:
            self._user_conns[userid] = conn
        self._redis.subscribe(userid)

        user.state = "online"
        self._user_model.update_state(user)

        response: dict[str, Any] = {
            "msgid": ack,
            "errno": 0,
            "id": user.id,
            "name": user.name,
        }
        offline = self._offline_model.query(userid)
        if offline:
            response["offlinemsg"] = offline
            self._offline_model.remove(userid)

        friends = self._friend_model.query(userid)
        if friends:
            response["friends"] = [
                _dump({"id": f.id, "name": f.name, "state": f.state}) for f in friends
            ]
        conn.send(_dump(response))

    def reg(self, conn: Connection, js: dict, time: Any) -> None:
        """Create a user and answer with its new id."""
        user = User(name=js["name"], password=js["password"])
        ack = int(MsgType.REG_MSG_ACK)
        if self._user_model.insert(user):
            conn.send(_dump({"msgid": ack, "errno": 0, "id": user.id}))
        else:
            conn.send(_dump({"msgid": ack, "errno": 1}))

    def one_chat(self, conn: Connection, js: dict, time: Any) -> None:
        """Forward a private message locally, through redis, or store it offline."""
        toid = int(js["toid"] if "toid" in js else js["to"])
        payload = _dump(js)
        with self._conn_lock:
            target = self._user_conns.get(toid)
            if target is not None:
                target.send(payload)
                return

        if self._user_model.query(toid).state == "online":
            self._redis.publish(toid, payload)
            return
        self._offline_model.insert(toid, payload)

    def add_friend(self, conn: Connection, js: dict, time: Any) -> None:
        """Record a friendship."""
        self._friend_model.insert(int(js["id"]), int(js["friendid"]))

    def create_group(self, conn: Connection, js: dict, time: Any) -> None:
        """Create a group with the sender as its creator."""
        userid = int(js["id"])
        group = Group(-1, js["groupname"], js["groupdesc"])
        if self._group_model.create_group(group):
            self._group_model.add_group(userid, group.id, "creator")

    def add_group(self, conn: Connection, js: dict, time: Any) -> None:
        """Join the sender to a group as a normal member."""
        self._group_model.add_group(int(js["id"]), int(js["groupid"]), "normal")

    def group_chat(self, conn: Connection, js: dict, time: Any) -> None:
        """Send a group message to every other member of the group."""
        userid = int(js["id"])
        groupid = int(js["groupid"])
        payload = _dump(js)
        members = self._group_model.query_group_users(userid, groupid)

        with self._conn_lock:
            for member in members:
                target = self._user_conns.get(member)
                if target is not None:
                    target.send(payload)
                elif self._user_model.query(member).state == "online":
                    self._redis.publish(member, payload)
                else:
                    self._offline_model.insert(member, payload)

    def loginout(self, conn: Connection, js: dict, time: Any) -> None:
        """Log the user out: forget its connection and mark it offline."""
        userid = int(js["id"])
        with self._conn_lock:
            self._user_conns.pop(userid, None)
        self._redis.unsubscribe(userid)
        self._user_model.update_state(User(userid, "", "", "offline"))

    def reset(self) -> None:
        """Mark every user offline, as done when the server shuts down."""
        self._user_model.reset_state()

    def client_close_exception(self, conn: Connection) -> None:
        """Handle a connection that closed without logging out."""
        user = User()
        with self._conn_lock:
            for userid, known in self._user_conns.items():
                if known is conn:
                    user.id = userid
                    del self._user_conns[userid]
                    break
        user.state = "offline"
        self._user_model.update_state(user)
        log.info("%s has closed connection.", getattr(conn, "name", conn))

    def handle_redis_subscribe_message(self, userid: int, msg: str) -> None:
        """Deliver a message relayed through redis, or store it if the user left."""
        with self._conn_lock:
            target = self._user_conns.get(userid)
            if target is not None:
                target.send(msg)
                return
        self._offline_model.insert(userid, msg)