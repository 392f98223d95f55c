"""Flask application factory."""
import traceback

from flask import Flask, jsonify, request
from flask_wtf.csrf import CSRFError, CSRFProtect
from werkzeug.exceptions import HTTPException

from storefront.database import get_session, init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # CSRF protection (clients send the token from GET /cart as X-CSRFToken)
    CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({
            'status': 'error',
            'code': 'csrf_error',
            'message': 'Your session has expired. Reload the page and try again.'
        }), 400

    # Error tracking in production
    if app.config.get('SENTRY_DSN') and not app.config.get('TESTING'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=app.config.get('ENV', 'production'),
        )

    # Redis cache for listings
    from storefront.services.cache_service import init_cache
    init_cache(app)

    # Prometheus instrumentation
    from storefront.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: trust X-Forwarded-* from the reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Database and the persistence provider used by every service
    init_db(app)
    from storefront.persistence import init_persistence
    persistence = init_persistence(app, get_session())

    from storefront.services.checkout_service import CheckoutService
    app.extensions['checkout'] = CheckoutService.from_config(persistence, app.config)

    from storefront.middleware import load_session_identity

    @app.before_request
    def before_request_handler():
        """Load the authentication session for each request."""
        load_session_identity()

    # Error Handlers
    from storefront.exceptions import StorefrontError

    @app.errorhandler(StorefrontError)
    def handle_storefront_error(error):
        """Render application exceptions as JSON."""
        if error.status_code >= 500:
            app.logger.error(f"StorefrontError [{error.status_code}] {error.code}: {error.message}")
        else:
            app.logger.info(f"StorefrontError [{error.status_code}] {error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({
            'status': 'error',
            'code': error.name.lower().replace(' ', '_'),
            'message': error.description,
        }), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception on {request.method} {request.path}: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'code': 'internal_error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from storefront.blueprints.cart import cart_bp
    from storefront.blueprints.checkout import checkout_bp
    from storefront.blueprints.orders import orders_bp
    from storefront.blueprints.delivery import delivery_bp
    from storefront.blueprints.coupons import coupons_bp
    from storefront.blueprints.admin import admin_bp
    from storefront.blueprints.metrics import metrics_bp

    app.register_blueprint(cart_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(delivery_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(metrics_bp)

    # CLI commands
    from storefront.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
