import logging

from sqlalchemy.exc import SQLAlchemyError

from crashgame import db
from crashgame.exceptions import RoundRecordError
from crashgame.models import CrashRound


logger = logging.getLogger(__name__)


class RoundRecorder:
    """Persists round outcomes outside the round worker.

    ``submit`` hands the write to a background task (or runs it inline when
    no spawner is given, as in tests) so the round never waits on the
    database.
    """

    def __init__(self, app, spawn=None):
        self.app = app
        self._spawn = spawn

    def record_round(self, crash_at: float, round_number: int = None,
                     player_count: int = 0, total_staked: float = 0.0) -> dict:
        with self.app.app_context():
            row = CrashRound(
                crash_at=round(float(crash_at), 2),
                round_number=round_number,
                player_count=player_count,
                total_staked=total_staked,
            )
            try:
                db.session.add(row)
                db.session.commit()
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise RoundRecordError(f"Could not record round {round_number}: {exc}") from exc
            logger.info(f"[round-recorded] round={round_number} crash_at={row.crash_at} game_id={row.game_id}")
            return row.to_dict()

    def submit(self, crash_at, round_number=None, player_count=0, total_staked=0.0) -> None:
        if self._spawn is None:
            self._record_safely(crash_at, round_number, player_count, total_staked)
        else:
            self._spawn(self._record_safely, crash_at, round_number, player_count, total_staked)

    def _record_safely(self, crash_at, round_number, player_count, total_staked):
        try:
            self.record_round(crash_at, round_number, player_count, total_staked)
        except RoundRecordError as exc:
            logger.error(f"[round-record-failed] round={round_number} crash_at={crash_at} error={exc}")
