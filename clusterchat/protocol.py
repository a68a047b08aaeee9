"""Message type identifiers shared by the chat server and client."""

from __future__ import annotations

from enum import IntEnum


class MsgType(IntEnum):
    """The ``msgid`` values carried by every JSON message."""

    LOGIN_MSG = 1
    LOGIN_MSG_ACK = 2
    LOGINOUT_MSG = 3
    REG_MSG = 4
    REG_MSG_ACK = 5
    ONE_CHAT_MSG = 6
    ADD_FRIEND_MSG = 7
    CREATE_GROUP_MSG = 8
    ADD_GROUP_MSG = 9
    GROUP_CHAT_MSG = 10