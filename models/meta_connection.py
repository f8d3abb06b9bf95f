from datetime import datetime
from extensions import db
from utils.security import encrypt_token, decrypt_token # For encrypting/decrypting tokens.


class MetaConnection(db.Model):
    """
    A user's connection to a Meta Business account.

    There is at most one row per user (upsert semantics, enforced by the unique
    constraint on `user_id`). It stores the Fernet-encrypted access token, the
    external Meta account id returned by `/me`, the selected default ad account
    and the moment the token stops being usable. Tokens are never refreshed
    silently: once `token_expires_at` is in the past the user has to run the
    handshake again.
    """
    __tablename__ = 'meta_connections' # Specifies the database table name.

    id = db.Column(db.Integer, primary_key=True) # Unique identifier for the connection record.

    # Foreign key linking to the 'users' table. Unique: one connection per user.
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True, index=True)

    # --- Meta account details ---
    # Stable external account identifier returned by the Graph API `/me` endpoint.
    business_id = db.Column(db.String(255), nullable=True)
    # Default ad account ('act_<id>'). Nullable until the user picks one.
    ad_account_id = db.Column(db.String(255), nullable=True, index=True)

    # --- Token Management (Encrypted) ---
    access_token_encrypted = db.Column(db.Text, nullable=False)
    token_expires_at = db.Column(db.DateTime, nullable=True)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=datetime.utcnow) # Timestamp of when the connection was created.
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow) # Timestamp of the last update.

    # --- Relationships ---
    # 'backref' adds a scalar 'meta_connection' attribute to User instances.
    user = db.relationship('User', backref=db.backref('meta_connection', uselist=False))

    def __repr__(self):
        return f'<MetaConnection UserID:{self.user_id} (AdAccount: {self.ad_account_id}) Expires:{self.token_expires_at}>'

    # --- Access Token Property ---
    @property
    def access_token(self):
        """
        Property getter for the access token.
        Decrypts the stored `access_token_encrypted` value before returning it.

        Returns:
            str or None: The decrypted access token, or None if no encrypted token is stored.
        """
        if self.access_token_encrypted:
            return decrypt_token(self.access_token_encrypted)
        return None

    @access_token.setter
    def access_token(self, value):
        """
        Property setter for the access token.
        Encrypts the provided token value before storing it in `access_token_encrypted`.
        """
        if value:
            self.access_token_encrypted = encrypt_token(value)
        else:
            self.access_token_encrypted = None

    def is_expired(self, now=None):
        """True once `now` is past `token_expires_at`. A connection without an expiry never expires."""
        if self.token_expires_at is None:
            return False
        return (now or datetime.utcnow()) > self.token_expires_at

    def to_dict(self, now=None):
        """Public view of the connection. The access token is never included."""
        return {
            'connected': True,
            'expired': self.is_expired(now),
            'businessId': self.business_id,
            'adAccountId': self.ad_account_id,
            'tokenExpiresAt': self.token_expires_at.isoformat() if self.token_expires_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
