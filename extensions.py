from flask_sqlalchemy import SQLAlchemy # ORM for database interactions.
from flask_login import LoginManager    # Resolves the bearer credential of each API request to a user.

# Initialize SQLAlchemy.
# This instance is associated with the Flask app in the application factory
# (create_app in app.py) using db.init_app(app). All cross-request state of the
# Meta handshake (pending states, connections, tag overrides) lives here.
db = SQLAlchemy()

# Initialize Flask-Login's LoginManager.
# MetaMinds is a JSON API: users are loaded per request from the
# "Authorization: Bearer <token>" header by the request_loader registered in
# create_app, and unauthenticated access raises UnauthenticatedError (401).
login_manager = LoginManager()
