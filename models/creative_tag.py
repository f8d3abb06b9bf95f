from datetime import datetime
from extensions import db


class CreativeTag(db.Model):
    """
    User-supplied theme override for a Meta ad creative.

    When `tags` is non-empty it replaces the automatically detected themes of
    the creative for this user. Disconnecting from Meta leaves these rows alone.
    """
    __tablename__ = 'creative_tags'
    __table_args__ = (
        db.UniqueConstraint('creative_id', 'user_id', name='uq_creative_tags_creative_user'),
    )

    id = db.Column(db.Integer, primary_key=True)
    creative_id = db.Column(db.String(64), nullable=False, index=True) # Meta creative id.
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    ad_account_id = db.Column(db.String(255), nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list) # Ordered list of theme names.

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<CreativeTag Creative:{self.creative_id} UserID:{self.user_id} Tags:{self.tags}>'
