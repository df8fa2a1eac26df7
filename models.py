import uuid

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _new_user_id():
    return str(uuid.uuid4())


class User(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=_new_user_id)
    name = db.Column(db.String(120), nullable=False)
    external_auth_id = db.Column(db.String(255))  # Identity provider user id
    email = db.Column(db.String(255))
    avatar_url = db.Column(db.String(500))

    # Socket id of the live connection, NULL while offline
    connection_token = db.Column(db.String(100), index=True)
    online = db.Column(db.Boolean, nullable=False, default=False)

    messages = db.relationship('Message', backref='sender', lazy=True, passive_deletes=True)

    __table_args__ = (
        db.UniqueConstraint('name', name='uq_user_name'),
        db.UniqueConstraint('external_auth_id', name='uq_user_external_auth_id'),
        db.UniqueConstraint('email', name='uq_user_email'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'externalAuthId': self.external_auth_id,
            'email': self.email,
            'avatarUrl': self.avatar_url,
            'online': self.online,
        }

    def __repr__(self):
        return f'<User {self.name!r} online={self.online}>'


class Message(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    text = db.Column(db.Text, nullable=False)
    is_system = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), index=True)

    # Survives the sender; rendered as an unknown sender once dangling
    sender_id = db.Column(db.String(36), db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)

    def __repr__(self):
        return f'<Message {self.id} system={self.is_system}>'
