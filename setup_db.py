import logging

from app import create_app
from models import db

logger = logging.getLogger('setup_db')

app = create_app()

with app.app_context():
    db.create_all()
    logger.info('Database setup complete! (%s)', app.config['SQLALCHEMY_DATABASE_URI'])
