from datetime import datetime, timedelta
from extensions import db


class AdAccountCache(db.Model):
    """Last `/me/adaccounts` listing fetched for a user, served until it is older than the TTL."""
    __tablename__ = 'ad_accounts_cache'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True, index=True)
    data = db.Column(db.JSON, nullable=False) # {'adAccounts': [...]}
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def is_fresh(self, ttl_seconds, now=None):
        if self.updated_at is None:
            return False
        return (now or datetime.utcnow()) - self.updated_at < timedelta(seconds=ttl_seconds)

    def __repr__(self):
        return f'<AdAccountCache UserID:{self.user_id} Updated:{self.updated_at}>'
