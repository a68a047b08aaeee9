"""Data-access objects for the user, friend, group and offline-message tables."""

from __future__ import annotations

from typing import Any, Callable, Sequence

from .db import MySQL
from .models import Group, GroupUser, User

ConnectionFactory = Callable[[], MySQL]


class _Store:
    """Shared plumbing: each operation opens its own connection."""

    def __init__(self, connect: ConnectionFactory | None = None) -> None:
        self._connect = connect if connect is not None else MySQL

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> bool:
        with self._connect() as mysql:
            return bool(mysql.connect() and mysql.update(sql, params))

    def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        with self._connect() as mysql:
            if not mysql.connect():
                return []
            return mysql.query(sql, params) or []


class UserModel(_Store):
    """Operations on the ``user`` table."""

    def __init__(self, connect: ConnectionFactory | None = None) -> None:
        super().__init__(connect)

    def insert(self, user: User) -> bool:
        """Store a new user and set its generated id."""
        with self._connect() as mysql:
            if mysql.connect() and mysql.update(
                "insert into user(name, password, state) values(%s, %s, %s)",
                (user.name, user.password, user.state),
            ):
                user.id = mysql.insert_id()
                return True
        return False

    def query(self, userid: int) -> User:
        """Return the user with this id, or a default ``User`` if absent."""
        rows = self._fetch(
            "select id, name, password, state from user where id = %s", (userid,)
        )
        if not rows:
            return User()
        uid, name, password, state = rows[0]
        return User(int(uid), name, password, state)

    def update_state(self, user: User) -> bool:
        """Persist the user's state."""
        return self._execute(
            "update user set state = %s where id = %s", (user.state, user.id)
        )

    def reset_state(self) -> None:
        """Mark every online user as offline."""
        self._execute("update user set state = 'offline' where state = 'online'")


class FriendModel(_Store):
    """Operations on the ``friend`` table."""

    def __init__(self, connect: ConnectionFactory | None = None) -> None:
        super().__init__(connect)

    def insert(self, userid: int, friendid: int) -> None:
        """Record that ``friendid`` is a friend of ``userid``."""
        self._execute("insert into friend values(%s, %s)", (userid, friendid))

    def query(self, userid: int) -> list[User]:
        """Return the friends of ``userid``."""
        rows = self._fetch(
            "select a.id, a.name, a.state from user a inner join friend b "
            "on b.friendid = a.id where b.userid = %s",
            (userid,),
        )
        return [User(id=int(uid), name=name, state=state) for uid, name, state in rows]


class GroupModel(_Store):
    """Operations on the ``allgroup`` and ``groupuser`` tables."""

    def __init__(self, connect: ConnectionFactory | None = None) -> None:
        super().__init__(connect)

    def create_group(self, group: Group) -> bool:
        """Store a new group and set its generated id."""
        with self._connect() as mysql:
            if mysql.connect() and mysql.update(
                "insert into allgroup(groupname, groupdesc) values(%s, %s)",
                (group.name, group.desc),
            ):
                group.id = mysql.insert_id()
                return True
        return False

    def add_group(self, userid: int, groupid: int, role: str) -> None:
        """Add a user to a group with the given role."""
        self._execute(
            "insert into groupuser values(%s, %s, %s)", (groupid, userid, role)
        )

    def query_groups(self, userid: int) -> list[Group]:
        """Return the groups ``userid`` belongs to, each with its members."""
        with self._connect() as mysql:
            if not mysql.connect():
                return []
            rows = mysql.query(
                "select a.id, a.groupname, a.groupdesc from allgroup a inner join "
                "groupuser b on a.id = b.groupid where b.userid = %s",
                (userid,),
            ) or []
            groups = [Group(int(gid), name, desc) for gid, name, desc in rows]
            for group in groups:
                members = mysql.query(
                    "select a.id, a.name, a.state, b.grouprole from user a "
                    "inner join groupuser b on b.userid = a.id where b.groupid = %s",
                    (group.id,),
                ) or []
                group.users.extend(
                    GroupUser(id=int(uid), name=name, state=state, role=role)
                    for uid, name, state, role in members
                )
            return groups

    def query_group_users(self, userid: int, groupid: int) -> list[int]:
        """Return the ids of the other members of ``groupid``."""
        rows = self._fetch(
            "select userid from groupuser where groupid = %s and userid != %s",
            (groupid, userid),
        )
        return [int(uid) for (uid,) in rows]


class OfflineMsgModel(_Store):
    """Operations on the ``offlinemessage`` table."""

    def __init__(self, connect: ConnectionFactory | None = None) -> None:
        super().__init__(connect)

    def insert(self, userid: int, msg: str) -> None:
        """Store a message for a user who is offline."""
        self._execute("insert into offlinemessage values(%s, %s)", (userid, msg))

    def remove(self, userid: int) -> None:
        """Delete all stored messages for a user."""
        self._execute("delete from offlinemessage where userid = %s", (userid,))

    def query(self, userid: int) -> list[str]:
        """Return all stored messages for a user."""
        rows = self._fetch(
            "select message from offlinemessage where userid = %s", (userid,)
        )
        return [message for (message,) in rows]