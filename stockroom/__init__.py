"""Flask application factory."""
from flask import Flask, jsonify

from stockroom.database import init_db
from stockroom.logging_config import configure_logging


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize database
    init_db(app)

    # Company settings fall back to these defaults
    from stockroom.services.settings_service import configure_defaults
    configure_defaults(app.config)

    # Error Handlers
    from stockroom.exceptions import StockroomError

    @app.errorhandler(StockroomError)
    def handle_stockroom_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"StockroomError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"StockroomError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    # Register CLI commands
    from stockroom.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
