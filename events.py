import logging
from enum import Enum

from flask import request
from flask_socketio import Namespace, emit, join_room

from store import DEFAULT_HISTORY_LIMIT, SYSTEM_SENDER

logger = logging.getLogger(__name__)

CHAT_ROOM = 'group-chat'


class ConnectionState(Enum):
    CONNECTED = 'connected'
    JOINED = 'joined'
    DISCONNECTED = 'disconnected'


def parse_join(data=None, *args):
    """Normalize a join payload.

    Browsers send either ``{name, externalAuthId, avatarUrl, email}`` or the
    same values as positional arguments.
    """
    if isinstance(data, dict):
        return {
            'name': data.get('name'),
            'external_auth_id': data.get('externalAuthId'),
            'avatar_url': data.get('avatarUrl'),
            'email': data.get('email'),
        }
    extra = list(args[:3]) + [None] * (3 - len(args[:3]))
    return {
        'name': data if isinstance(data, str) else None,
        'external_auth_id': extra[0],
        'avatar_url': extra[1],
        'email': extra[2],
    }


def system_notice(text, user):
    """Admin message about ``user``; clients use targetId to spot their own."""
    return {
        'user': SYSTEM_SENDER,
        'text': text,
        'isEphemeral': True,
        'targetId': user.external_auth_id or user.id,
    }


class ChatNamespace(Namespace):
    """Socket handlers for the single group chat room."""

    def __init__(self, namespace, store, history_limit=DEFAULT_HISTORY_LIMIT):
        super().__init__(namespace)
        self.store = store
        self.history_limit = history_limit
        self.connections = {}  # {sid: ConnectionState}

    def state_of(self, sid):
        return self.connections.get(sid, ConnectionState.DISCONNECTED)

    def on_connect(self, auth=None):
        self.connections[request.sid] = ConnectionState.CONNECTED
        logger.info('New connection: %s', request.sid)

    def on_join(self, data=None, *args):
        sid = request.sid
        if self.state_of(sid) is ConnectionState.JOINED:
            logger.info('Duplicate join attempt ignored for %s', sid)
            return None

        fields = parse_join(data, *args)
        result = self.store.join(sid, **fields)
        if result.error:
            logger.warning('Join failed for %r: %s', fields['name'], result.error)
            return {'error': result.error}

        user = result.user
        self.connections[sid] = ConnectionState.JOINED
        logger.info('%s joined (%s)', user.name, sid)
        join_room(CHAT_ROOM)

        emit('chatHistory', self.store.recent_messages(self.history_limit))
        emit('message', system_notice(f'Welcome to the chat, {user.name}!', user))
        if not result.was_previously_online:
            emit('message', system_notice(f'{user.name} has joined the chat', user),
                 to=CHAT_ROOM, include_self=False)
        return {'user': user.to_dict()}

    def on_sendMsg(self, text=None):
        sid = request.sid
        if self.state_of(sid) is not ConnectionState.JOINED or not isinstance(text, str):
            return
        user = self.store.online_user(sid)
        if user is None:
            return

        emit('message', {'user': user.name, 'avatarUrl': user.avatar_url, 'text': text}, to=CHAT_ROOM)
        # Broadcast already happened; a failed save only loses the history entry
        self.store.save_message(text, sender_id=user.id)

    def on_disconnect(self, reason=None):
        sid = request.sid
        self.connections.pop(sid, None)
        logger.info('Disconnected: %s (%s)', sid, reason)

        user = self.store.leave(sid)
        if user is None:
            return
        emit('message', system_notice(f'{user.name} has left the chat', user),
             to=CHAT_ROOM, include_self=False)
        logger.info('%s left', user.name)
