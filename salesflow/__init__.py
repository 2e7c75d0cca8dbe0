import os
import logging
from flask import Flask, jsonify, send_from_directory
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from dotenv import load_dotenv

from .config import CONFIGS, ProdConfig

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()


def create_app(config_name: str | None = None, overrides: dict | None = None) -> Flask:
    """Application factory with environment based configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    # Pick configuration
    env = config_name or os.getenv('ENV') or os.getenv('FLASK_ENV') or 'production'
    app.config.from_object(CONFIGS.get(env, ProdConfig))
    if overrides:
        app.config.update(overrides)
    if not app.config.get('STORAGE_DIR'):
        app.config['STORAGE_DIR'] = os.path.join(app.instance_path, 'storage')

    # Initialise logging
    logging.basicConfig(level=logging.DEBUG if app.debug else logging.INFO)

    db.init_app(app)
    migrate.init_app(app, db)

    # Ensure models loaded so tables can be created
    from salesflow import models  # noqa
    with app.app_context():
        db.create_all()

    from salesflow.integrations import init_integrations
    init_integrations(app)

    from salesflow.errors import WorkflowError

    @app.errorhandler(WorkflowError)
    def workflow_error(err):
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(404)
    def not_found(_):
        return jsonify(error='not_found', message='Resource not found'), 404

    @app.errorhandler(405)
    def method_not_allowed(_):
        return jsonify(error='method_not_allowed', message='Method not allowed'), 405

    @app.errorhandler(500)
    def server_error(_):
        return jsonify(error='internal', message='Internal server error'), 500

    @app.route('/files/<bucket>/<path:key>')
    def stored_file(bucket, key):
        return send_from_directory(os.path.join(app.config['STORAGE_DIR'], bucket), key)

    from salesflow.auth.routes import bp as auth_bp
    from salesflow.sessions.routes import bp as sessions_bp
    from salesflow.pricing.routes import bp as pricing_bp
    from salesflow.pricing.cli import pricing_cli

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(sessions_bp, url_prefix='/sessions')
    app.register_blueprint(pricing_bp, url_prefix='/pricing')
    app.cli.add_command(pricing_cli)

    return app
