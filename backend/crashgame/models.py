from crashgame import db
from datetime import datetime, timezone
import uuid


def _utcnow():
    return datetime.now(timezone.utc)


class CrashRound(db.Model):
    __tablename__ = 'crash_round'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.String(36), unique=True, index=True, nullable=False, default=lambda: str(uuid.uuid4()))
    round_number = db.Column(db.Integer, nullable=True)
    crash_at = db.Column(db.Float, nullable=False)
    player_count = db.Column(db.Integer, default=0, nullable=False)
    total_staked = db.Column(db.Float, default=0.0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'round_number': self.round_number,
            'crash_at': self.crash_at,
            'player_count': self.player_count,
            'total_staked': self.total_staked,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
