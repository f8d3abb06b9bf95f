import logging # Standard library logging, used to set the app logger's level.
import click # Command-line helpers for the `flask` CLI commands registered below.
from flask import Flask, jsonify # The main Flask class and JSON responses.
from flask_migrate import Migrate # For handling database migrations with Flask-Migrate.
from config import Config # Import the application's configuration class.
from extensions import db, login_manager # Import initialized extensions.
from models.user import User # Import User model, primarily for the request_loader.
from services.errors import MetaMindsError, UnauthenticatedError
from utils.security import load_api_token


def _bearer_token(request):
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


# Application Factory Function
def create_app(config_class=Config):
    """
    Application factory for creating and configuring the Flask app.
    This pattern is useful for creating multiple app instances (e.g., for testing)
    and avoids global app objects.

    Args:
        config_class: Configuration object to load; tests pass their own.
    """
    app = Flask(__name__)

    # Load configuration from the Config object (defined in config.py).
    app.config.from_object(config_class)
    app.logger.setLevel(getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO))

    # --- Initialize Flask Extensions ---
    # Initialize SQLAlchemy with the app (for database ORM).
    db.init_app(app)
    # Initialize Flask-Migrate for database schema migrations.
    # This links the Flask app and SQLAlchemy DB instance to the migration engine.
    Migrate(app, db)

    # Initialize Flask-Login. There are no sessions or login pages: every request
    # authenticates with its bearer token through the request_loader below.
    login_manager.init_app(app)

    # --- Flask-Login Request Loader ---
    @login_manager.request_loader
    def load_user_from_request(request):
        """Resolves 'Authorization: Bearer <token>' to a User, or None."""
        user_id = load_api_token(_bearer_token(request))
        if user_id is None:
            return None
        return db.session.get(User, user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        raise UnauthenticatedError()

    # --- Error Handling ---
    # Every typed service error becomes a JSON body with its HTTP status.
    @app.errorhandler(MetaMindsError)
    def handle_metaminds_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{error.__class__.__name__}: {error.message}")
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        return response

    # --- Import and Register Blueprints ---
    from routes.meta_connection import meta_connection_bp
    from routes.ads import ads_bp
    from routes.ai_insights import ai_insights_bp

    app.register_blueprint(meta_connection_bp)  # /api/meta/...
    app.register_blueprint(ads_bp)              # /api/ads/...
    app.register_blueprint(ai_insights_bp)      # /api/ai-insights/...

    # --- CLI Commands ---
    @app.cli.command('prune-meta-states')
    @click.option('--max-age', type=int, default=None,
                  help='Age in seconds above which pending states are deleted (default: META_STATE_TTL_SECONDS).')
    def prune_meta_states(max_age):
        """Delete Meta OAuth states that were never completed."""
        from services.meta_oauth import prune_stale_states
        deleted = prune_stale_states(max_age)
        click.echo(f"Deleted {deleted} stale Meta handshake state(s).")

    return app # Return the configured Flask app instance.

# This block allows running the Flask development server directly using `python app.py`.
if __name__ == '__main__':
    app = create_app() # Create an app instance using the factory.
    app.run(debug=True)
