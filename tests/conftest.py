import pytest

from app import create_app
from models import Message, User, db as _db


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'HISTORY_LIMIT': 50,
    })
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def store(app):
    return app.extensions['chat_store']


@pytest.fixture
def socketio(app):
    return app.extensions['socketio']


@pytest.fixture
def make_user(db):
    def _make_user(name, **fields):
        user = User(name=name, **fields)
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture
def make_message(db):
    def _make_message(text, sender=None, is_system=False):
        message = Message(text=text, sender_id=sender.id if sender else None, is_system=is_system)
        db.session.add(message)
        db.session.commit()
        return message
    return _make_message
