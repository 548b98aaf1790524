import os
from flask import Flask, jsonify
from sqlalchemy import text
from config.config import config
from app.database import init_db, get_db
from app.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory"""
    config_name = config_name or os.environ.get('FLASK_ENV', 'default')
    app_config = config.get(config_name, config['default'])

    app = Flask(__name__)
    app.config.from_object(app_config)

    init_db()

    from app.routes import availability, bookings, calendar, agent
    app.register_blueprint(availability.bp, url_prefix='/api/availability')
    app.register_blueprint(bookings.bp, url_prefix='/api/bookings')
    app.register_blueprint(calendar.bp, url_prefix='/api/calendar')
    app.register_blueprint(agent.bp, url_prefix='/api/agent')

    @app.route('/api/health', methods=['GET'])
    def health():
        try:
            with get_db() as db:
                db.execute(text('SELECT 1'))
            return jsonify({'status': 'ok'}), 200
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            return jsonify({'status': 'error', 'error': 'Database unavailable'}), 503

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'error': 'Method not allowed'}), 405

    if app_config.SYNC_SCHEDULER_ENABLED and not app_config.TESTING:
        from app.services.sync_scheduler import CalendarSyncScheduler
        app.extensions['calendar_sync_scheduler'] = CalendarSyncScheduler()
        app.extensions['calendar_sync_scheduler'].start()

    logger.info(f"VillaCare scheduling API started ({config_name})")
    return app
