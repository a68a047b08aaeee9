"""Plain records mirroring the rows of the chat database."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A row of the ``user`` table."""

    id: int = -1
    name: str = ""
    password: str = ""
    state: str = "offline"


@dataclass
class GroupUser(User):
    """A group member: a user together with its role in the group."""

    role: str = ""


@dataclass
class Group:
    """A row of the ``allgroup`` table with its members."""

    id: int = -1
    name: str = ""
    desc: str = ""
    users: list[GroupUser] = field(default_factory=list)