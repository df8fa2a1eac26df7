"""
Data access for chat users and messages.

ChatStore owns every read and write the chat makes against the database:
finding or creating the user behind a connecting socket, marking users
online/offline, storing messages and replaying recent history.

Database errors never leave this module. Writes are funnelled through
``ChatStore._write`` which rolls the session back and reports the failure as
a ``WriteResult`` tagged with a ``ConflictKind``; public methods turn those
into plain results for the socket handlers.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import Message, User

logger = logging.getLogger(__name__)

JOIN_FAILED = 'Could not join chat'
SYSTEM_SENDER = 'admin'
UNKNOWN_SENDER = 'Unknown'
DEFAULT_HISTORY_LIMIT = 50


class ConflictKind(Enum):
    NAME_COLLISION = 'name_collision'          # unique violation on user.name
    DUPLICATE_IDENTITY = 'duplicate_identity'  # unique violation on external_auth_id / email
    OTHER = 'other'


class JoinFailed(Exception):
    """Raised inside the join flow when no fallback can recover a write."""


@dataclass
class WriteResult:
    user: Optional[User] = None
    conflict: Optional[ConflictKind] = None

    @property
    def ok(self):
        return self.conflict is None


@dataclass
class JoinResult:
    user: Optional[User] = None
    was_previously_online: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class UserSnapshot:
    """Copy of a user row taken before it is changed."""
    id: str
    name: str
    external_auth_id: Optional[str]
    avatar_url: Optional[str]

    @classmethod
    def of(cls, user):
        return cls(
            id=user.id,
            name=user.name,
            external_auth_id=user.external_auth_id,
            avatar_url=user.avatar_url,
        )


def classify_conflict(exc):
    if not isinstance(exc, IntegrityError):
        return ConflictKind.OTHER
    # sqlite reports columns, postgres/mysql report the constraint name
    detail = str(exc.orig)
    if 'uq_user_name' in detail or 'user.name' in detail:
        return ConflictKind.NAME_COLLISION
    return ConflictKind.DUPLICATE_IDENTITY


class ChatStore:
    def __init__(self, db):
        self.db = db

    @property
    def session(self):
        return self.db.session

    def _write(self, apply):
        """Run ``apply`` and commit; ``apply`` returns the user being written."""
        try:
            user = apply()
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            conflict = classify_conflict(exc)
            logger.debug('Write rolled back (%s): %s', conflict.value, exc)
            return WriteResult(conflict=conflict)
        return WriteResult(user=user)

    def _find_by(self, **criteria):
        return self.session.query(User).filter_by(**criteria).first()

    def _find_any(self, name, external_auth_id=None, email=None):
        clauses = [User.name == name]
        if external_auth_id:
            clauses.append(User.external_auth_id == external_auth_id)
        if email:
            clauses.append(User.email == email)
        return self.session.query(User).filter(or_(*clauses)).first()

    # Users

    def join(self, connection_token, name, external_auth_id=None, avatar_url=None, email=None):
        """Find or create the user for a joining connection and mark it online.

        Identity is resolved by external auth id, then email, then display
        name. Returns a JoinResult; on failure only ``error`` is set.
        """
        if not isinstance(name, str):
            logger.warning('Join rejected, name is %r', name)
            return JoinResult(error=JOIN_FAILED)
        clean_name = name.strip()
        try:
            return self._reconcile(connection_token, clean_name, external_auth_id, avatar_url, email)
        except (JoinFailed, SQLAlchemyError):
            self.session.rollback()
            logger.exception('Join failed for %r', clean_name)
            return JoinResult(error=JOIN_FAILED)

    def _reconcile(self, token, name, external_auth_id, avatar_url, email):
        user = None
        if external_auth_id:
            user = self._find_by(external_auth_id=external_auth_id)
        if user is None and email:
            user = self._find_by(email=email)
        if user is None:
            user = self._find_by(name=name)

        if user is not None:
            return self._rejoin(user, token, name, external_auth_id, avatar_url, email)

        result = self._write(lambda: self._create(token, name, external_auth_id, avatar_url, email))
        if result.ok:
            return JoinResult(user=result.user, was_previously_online=False)
        if result.conflict is ConflictKind.OTHER:
            raise JoinFailed('could not create user %r' % name)

        # Someone else created a matching user between our lookup and insert
        existing = self._find_any(name, external_auth_id, email)
        if existing is None:
            raise JoinFailed('user %r vanished after a unique violation' % name)
        was_online = existing.online
        result = self._write(lambda: self._connect(existing, token))
        if not result.ok:
            raise JoinFailed('could not reconnect user %r' % name)
        return JoinResult(user=result.user, was_previously_online=was_online)

    def _rejoin(self, user, token, name, external_auth_id, avatar_url, email):
        was_online = user.online
        result = self._write(lambda: self._apply_identity(
            user, token, external_auth_id, avatar_url, email, name=name))
        if result.ok:
            return JoinResult(user=result.user, was_previously_online=was_online)
        if result.conflict is not ConflictKind.NAME_COLLISION:
            raise JoinFailed('could not update user %r (%s)' % (name, result.conflict.value))

        logger.warning('Name conflict for %r, merging into the user holding it', name)
        holder = self._find_by(name=name)
        if holder is None:
            raise JoinFailed('name %r is no longer taken' % name)
        holder_was_online = holder.online
        result = self._write(lambda: self._merge_into(
            holder, user, token, external_auth_id, avatar_url, email))
        if not result.ok:
            raise JoinFailed('could not merge into user %r (%s)' % (name, result.conflict.value))
        return JoinResult(user=result.user, was_previously_online=holder_was_online)

    def _create(self, token, name, external_auth_id, avatar_url, email):
        user = User(
            name=name,
            external_auth_id=external_auth_id or None,
            email=email or None,
            avatar_url=avatar_url or None,
            connection_token=token,
            online=True,
        )
        self.session.add(user)
        return user

    def _connect(self, user, token):
        user.connection_token = token
        user.online = True
        return user

    def _apply_identity(self, user, token, external_auth_id, avatar_url, email, name=None):
        self._connect(user, token)
        user.external_auth_id = external_auth_id or user.external_auth_id
        user.email = email or user.email
        user.avatar_url = avatar_url or user.avatar_url
        if name:
            user.name = name
        return user

    def _merge_into(self, holder, other, token, external_auth_id, avatar_url, email):
        # The incoming keys move to the name holder, so they must leave `other` first
        if other.id != holder.id:
            if external_auth_id and other.external_auth_id == external_auth_id:
                other.external_auth_id = None
            if email and other.email == email:
                other.email = None
            self.session.flush()
        return self._apply_identity(holder, token, external_auth_id, avatar_url, email)

    def online_user(self, connection_token):
        """Return the user currently online under ``connection_token``, if any."""
        if not connection_token:
            return None
        try:
            return self._find_by(connection_token=connection_token, online=True)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception('Could not look up user for %s', connection_token)
            return None

    def leave(self, connection_token):
        """Mark the user behind ``connection_token`` offline.

        Returns a snapshot of the user as it was before going offline, or
        None when nobody is connected under that token.
        """
        if not connection_token:
            return None
        try:
            user = self._find_by(connection_token=connection_token)
            if user is None:
                return None
            snapshot = UserSnapshot.of(user)
            user.online = False
            user.connection_token = None
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception('Could not mark %s offline', connection_token)
            return None
        return snapshot

    # Messages

    def save_message(self, text, sender_id=None, is_system=False):
        try:
            message = Message(text=text, sender_id=sender_id or None, is_system=is_system)
            self.session.add(message)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception('Could not save message from %s', sender_id or SYSTEM_SENDER)
            return None
        return message

    def recent_messages(self, limit=DEFAULT_HISTORY_LIMIT):
        """Return the latest ``limit`` messages, oldest first, ready to emit."""
        try:
            messages = (
                self.session.query(Message)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
                .all()
            )
            messages.reverse()
            return [project_message(m) for m in messages]
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception('Could not load recent messages')
            return []


def project_message(message):
    """History entry keyed like live `message` events: display name under `user`."""
    sender = message.sender
    if message.is_system:
        display_name = SYSTEM_SENDER
    elif sender is not None:
        display_name = sender.name
    else:
        display_name = UNKNOWN_SENDER
    return {
        'user': display_name,
        'avatarUrl': sender.avatar_url if sender is not None else None,
        'text': message.text,
        'createdAt': message.created_at.isoformat() if message.created_at else None,
    }
