# clusterchat

A small chat system in two parts.

- **Server**: accepts JSON messages over TCP. It keeps users, friendships,
  groups and offline messages in MySQL. Several server instances can share
  the same MySQL and Redis. A message for a user who is logged in on another
  instance is relayed through Redis publish/subscribe.
- **Client**: a terminal program for registering, logging in, chatting with
  one user and chatting in groups.

## Installation

```
pip install .
```

## Requirements at run time

The server connects to MySQL with these defaults, which are set in
`clusterchat.db.MySQL`:

| setting  | default     |
|----------|-------------|
| host     | `127.0.0.1` |
| port     | `3306`      |
| user     | `root`      |
| password | `password`  |
| database | `chat`      |

The database must already contain these tables:

- `user(id, name, password, state)`, where `id` is auto-generated
- `friend(userid, friendid)`
- `allgroup(id, groupname, groupdesc)`, where `id` is auto-generated
- `groupuser(groupid, userid, grouprole)`
- `offlinemessage(userid, message)`

The server also expects Redis on `127.0.0.1:6379`. If Redis cannot be
reached, the server still runs. It prints `connect redis failed!`, and it
cannot then relay messages to other instances.

## Running the server

```
clusterchat-server 127.0.0.1 6000
```

Pass port `0` to let the system pick a free port. Ctrl+C stops the server.
Before it exits, it sets every user marked `online` back to `offline`. If a
client disconnects without logging out, that user is marked `offline`.

## Running the client

```
clusterchat-client 127.0.0.1 6000
```

The first menu offers `1. login`, `2. register` and `3. quit`. When you
register, the server replies with your new user id. After you log in, the
client shows your friends and any messages that arrived while you were
offline. Then it accepts these commands:

| command                           | purpose                         |
|-----------------------------------|---------------------------------|
| `help`                            | list the commands               |
| `chat:friendid:message`           | send a message to one user      |
| `addfriend:friendid`              | add a friend                    |
| `creategroup:groupname:groupdesc` | create a group; you are creator |
| `addgroup:groupid`                | join a group as a normal member |
| `groupchat:groupid:message`       | send a message to a group       |
| `loginout`                        | log out, back to the first menu |

Each message is delivered in one of three ways:

- If the recipient is connected to the same server, it goes straight to them.
- If the recipient is online on another server, it is published on the Redis
  channel named after their user id.
- Otherwise it is stored, and the recipient gets it at their next login.

The client exits with status 1 if the server closes the connection. It exits
with status 0 after `quit` or at the end of input.

## Wire format

Each request is a JSON object whose `msgid` field is a value of
`clusterchat.protocol.MsgType`:

| value | name             |
|-------|------------------|
| 1     | LOGIN_MSG        |
| 2     | LOGIN_MSG_ACK    |
| 3     | LOGINOUT_MSG     |
| 4     | REG_MSG          |
| 5     | REG_MSG_ACK      |
| 6     | ONE_CHAT_MSG     |
| 7     | ADD_FRIEND_MSG   |
| 8     | CREATE_GROUP_MSG |
| 9     | ADD_GROUP_MSG    |
| 10    | GROUP_CHAT_MSG   |

The client ends each request with a NUL byte. The server also accepts a
complete JSON object that has no terminator.

A login answer carries an `errno` field, where `0` means success:

| errno | errmsg                |
|-------|-----------------------|
| 1     | `User not found`      |
| 2     | `Password error`      |
| 3     | `User already online` |

On success the answer also has `id` and `name`. It may also have `friends`
and `offlinemsg`.

## Using it as a library

- `clusterchat.protocol.MsgType`: the message ids.
- `clusterchat.models`: the dataclasses `User`, `GroupUser` and `Group`.
- `clusterchat.db.MySQL`: one connection, usable as a context manager.
  `update` and `query` return `False` and `None` on failure rather than
  raising.
- `clusterchat.stores`: `UserModel`, `FriendModel`, `GroupModel` and
  `OfflineMsgModel`. Each takes an optional factory that returns a `MySQL`,
  which is how other connection settings are supplied.
- `clusterchat.redisbus.Redis`: the pub/sub bus, for a given host and port.
- `clusterchat.service.ChatService`: the message handlers. The stores and
  the bus can be passed in.
- `clusterchat.server.ChatServer`: the TCP front end. Use
  `start()` and `stop()`, or run it with `main(argv)`.
- `clusterchat.client.ChatClient`: one client session over a connected
  socket. It also provides `parse_command` and `get_current_time`.

## What it does not do

- It does not create the database or its tables.
- The commands take only an address and a port. The MySQL and Redis settings
  can be changed only through the library classes.
- Passwords are stored and compared as given, without hashing.
- The server's login answer does not include the user's groups, so the
  client's group list stays empty.
- Adding a friend, creating a group and joining a group get no reply from the
  server.

## Tests

```
pip install .[test]
pytest
```