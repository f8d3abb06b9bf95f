from datetime import datetime
from extensions import db


class MetaConnectionState(db.Model):
    """
    A pending OAuth handshake: the opaque `state` value handed to Meta for one user.

    Rows are created by `services.meta_oauth.initiate` and deleted exactly once
    by the matching callback. Rows that are never consumed go stale after
    META_STATE_TTL_SECONDS and are removed by `flask prune-meta-states`.
    """
    __tablename__ = 'meta_connection_states'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    state = db.Column(db.String(128), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f'<MetaConnectionState UserID:{self.user_id} Created:{self.created_at}>'
