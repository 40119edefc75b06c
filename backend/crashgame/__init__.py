from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import atexit
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def get_engine(flask_app=None):
    """Return the RoundEngine bound to the given (or current) app."""
    from flask import current_app
    target = flask_app or current_app
    return target.extensions['crash_engine']


def create_app(config_class=Config, scheduler=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from crashgame.main import main
    flask_app.register_blueprint(main)

    from crashgame.api.game import game_api
    flask_app.register_blueprint(game_api, url_prefix='/api/game')

    _init_engine(flask_app, scheduler)

    from crashgame.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the round history tables."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('crash-history')
    @click.option('--limit', default=20, show_default=True, help='Number of rounds to show.')
    def crash_history_command(limit):
        """Prints the most recently recorded rounds."""
        from crashgame.models import CrashRound
        with flask_app.app_context():
            rows = CrashRound.query.order_by(CrashRound.id.desc()).limit(limit).all()
            if not rows:
                print('No rounds recorded yet.')
                return
            for row in rows:
                print(f"#{row.round_number or '-'}  {row.crash_at:.2f}x  players={row.player_count}  "
                      f"staked={row.total_staked:g}  {row.created_at:%Y-%m-%d %H:%M:%S}")

    @click.command('crash-curve')
    @click.argument('crash_at', type=float)
    def crash_curve_command(crash_at):
        """Prints every multiplier a round crashing at CRASH_AT would broadcast."""
        from crashgame.services.rounds.progression import curve
        tick_ms = int(flask_app.config.get('TICK_INTERVAL_MS', 100))
        base_ms = int(flask_app.config.get('BASE_LEVEL_DURATION_MS', 10000))
        for i, value in enumerate(curve(crash_at, tick_ms, base_ms)):
            print(f"{i * tick_ms:>7}ms  {value:.2f}x")

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(crash_history_command)
    flask_app.cli.add_command(crash_curve_command)

    return flask_app


def _init_engine(flask_app, scheduler=None):
    from crashgame.services.rounds import (
        BroadcastHub,
        RoundEngine,
        SerialScheduler,
        SettlementWorker,
        build_payout_client,
    )
    from crashgame.services.rounds.recorder import RoundRecorder

    cfg = flask_app.config
    testing = cfg.get('TESTING', False)

    # Importing models here registers the tables before create_all
    import crashgame.models  # noqa: F401
    if cfg.get('AUTO_CREATE_TABLES', False):
        with flask_app.app_context():
            db.create_all()

    hub = BroadcastHub()
    if scheduler is None:
        scheduler = SerialScheduler(spawn=socketio.start_background_task)
    settlement = SettlementWorker(
        build_payout_client(cfg),
        notify=hub.broadcast,
        max_attempts=int(cfg.get('PAYOUT_MAX_ATTEMPTS', 3)),
        backoff_sec=float(cfg.get('PAYOUT_RETRY_BACKOFF_SEC', 0.5)),
        spawn=None if testing else socketio.start_background_task,
    )
    recorder = RoundRecorder(flask_app, spawn=None if testing else socketio.start_background_task)
    engine = RoundEngine(hub, scheduler, settlement=settlement, recorder=recorder, config=cfg)
    flask_app.extensions['crash_engine'] = engine

    if cfg.get('ENGINE_AUTOSTART', True):
        scheduler.start()
        settlement.start()
        engine.start()
        if not testing:
            atexit.register(engine.shutdown)
        flask_app.logger.info("[engine-ready] crash round engine started")

    return engine
