from datetime import datetime
from extensions import db
from flask_login import UserMixin # For Flask-Login integration (e.g., current_user).
from utils.security import issue_api_token


class User(db.Model, UserMixin):
    """
    Represents a user of the MetaMinds API.

    Identity is owned by an external provider; this row carries the profile data the
    backend needs (email, name) and the `meta_connected` flag that the UI reads to
    decide between "connect" and "reconnect" flows. UserMixin provides default
    implementations for methods required by Flask-Login (e.g., is_authenticated, get_id).
    """
    __tablename__ = 'users' # Specifies the database table name.

    # --- Basic User Information ---
    id = db.Column(db.Integer, primary_key=True) # Unique identifier for the user.
    email = db.Column(db.String(120), unique=True, nullable=False, index=True) # User's email address. Must be unique.
    full_name = db.Column(db.String(100), nullable=True) # User's full name.

    # --- Meta profile flag ---
    # Set when a handshake completes; cleared best-effort on disconnect.
    meta_connected = db.Column(db.Boolean, nullable=False, default=False)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=datetime.utcnow) # Timestamp of when the user record was created.
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow) # Timestamp of the last update to the user record.

    def get_api_token(self):
        """Returns a signed bearer token for this user (see utils.security.issue_api_token)."""
        return issue_api_token(self.id)

    def __repr__(self):
        """
        Provides a string representation of the User object, useful for debugging.
        """
        return f'<User {self.email}>'
