from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
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

REGISTRY_KEY = 'manhunt.registry'


def get_registry(flask_app=None):
    """Return the session registry bound to ``flask_app`` (or the current app)."""
    if flask_app is None:
        from flask import current_app
        flask_app = current_app
    return flask_app.extensions[REGISTRY_KEY]


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One registry of running session loops per app; events fan out over Socket.IO
    from manhunt.services.game.events import SocketIOEventSink
    from manhunt.services.game.registry import SessionRegistry
    flask_app.extensions[REGISTRY_KEY] = SessionRegistry(
        flask_app, SocketIOEventSink(socketio), spawn=socketio.start_background_task,
    )

    # Import and register blueprints here
    from manhunt.main import main
    flask_app.register_blueprint(main)

    from manhunt.api import register_error_handlers
    from manhunt.api.games import games
    from manhunt.api.players import players
    from manhunt.api.missions import missions
    flask_app.register_blueprint(games, url_prefix='/api/games')
    flask_app.register_blueprint(players, url_prefix='/api/players')
    flask_app.register_blueprint(missions, url_prefix='/api/missions')
    register_error_handlers(flask_app)

    # Register Socket.IO event handlers
    from manhunt.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the database."""
        import manhunt.models  # noqa: F401
        with flask_app.app_context():
            get_registry(flask_app).stop_all()
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
