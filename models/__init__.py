# Importing the models here registers them with SQLAlchemy's metadata,
# so db.create_all() and Flask-Migrate see every table.
from .user import User
from .meta_connection import MetaConnection
from .meta_connection_state import MetaConnectionState
from .creative_tag import CreativeTag
from .ad_account_cache import AdAccountCache
