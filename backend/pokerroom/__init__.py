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


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One coordinator per process; broadcast and expiry watching subscribe to its events
    from pokerroom.services.gatekeeper import Gatekeeper
    from pokerroom.services.voting.coordinator import VotingCoordinator
    from pokerroom.services.voting.scheduler import ExpiryWatcher
    from pokerroom.socketio_events import broadcast, register_socketio_handlers

    coordinator = VotingCoordinator(Gatekeeper())
    coordinator.subscribe(broadcast)
    coordinator.subscribe(ExpiryWatcher(flask_app, socketio, coordinator))
    flask_app.extensions['voting_coordinator'] = coordinator

    from pokerroom.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    # Register Socket.IO event handlers
    register_socketio_handlers()

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database with a demo room."""
        from pokerroom.services import registry
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            room = registry.create_room('host-1', 'Host', 'Demo room')
            for title in ['User Login Feature', 'Dashboard UI', 'Real-time Voting']:
                registry.create_story(room.code, 'host-1', title)
            print(f'Database has been reset and seeded! Demo room: {room.code}')

    @click.command('purge-rooms')
    def purge_rooms_command():
        """Deletes rooms that have been inactive past the retention window."""
        from pokerroom.services import registry
        with flask_app.app_context():
            codes = registry.purge_expired_rooms(coordinator)
            print(f'Purged {len(codes)} room(s)')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(purge_rooms_command)

    return flask_app
