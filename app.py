# app.py

from flask import Flask, g, request, jsonify
from config import get_config
from extensions import db
import os
import uuid
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="campaign-broker", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)


# Configure Sentry for production error tracking
def init_sentry():
    """Initialize Sentry error tracking in production."""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if sentry_dsn and os.environ.get('FLASK_ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(
                    transaction_style='endpoint'
                ),
                SqlalchemyIntegration()
            ],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.environ.get('FLASK_ENV', 'development'),
            release=os.environ.get('GIT_SHA', 'unknown'),
            send_default_pii=False
        )
        logger.info("Sentry error tracking initialized")


init_sentry()


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize app with config
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)

    # Service registry: everything is created lazily on first use
    from services.service_registry import ServiceRegistry
    registry = ServiceRegistry()

    registry.register_singleton('db_session', lambda: db.session)
    registry.register_singleton(
        'campaign_repository',
        lambda db_session: _create_campaign_repository(db_session, app.config),
        dependencies=['db_session']
    )
    registry.register_singleton('gateway_environment', lambda: _create_environment_resolver(app.config))
    registry.register_singleton('gateway_transport', lambda: _create_gateway_transport(app.config))
    registry.register_singleton(
        'gateway_client',
        lambda gateway_environment, gateway_transport: _create_gateway_client(
            gateway_environment, gateway_transport, app.config),
        dependencies=['gateway_environment', 'gateway_transport']
    )
    registry.register_singleton('state_machine', lambda: _create_state_machine(app.config))
    registry.register_singleton('filter_compiler', lambda: _create_filter_compiler(app.config))
    registry.register_singleton('send_time_scheduler', _create_scheduler)
    registry.register_singleton(
        'callback_reconciliation',
        lambda campaign_repository, state_machine: _create_reconciliation_service(
            campaign_repository, state_machine, app.config),
        dependencies=['campaign_repository', 'state_machine']
    )
    registry.register_singleton(
        'campaign_orchestrator',
        lambda **deps: _create_campaign_orchestrator(app.config, **deps),
        dependencies=['campaign_repository', 'gateway_client', 'state_machine', 'filter_compiler',
                      'send_time_scheduler', 'callback_reconciliation', 'gateway_environment']
    )

    # Validate all dependencies are registered
    errors = registry.validate_dependencies()
    if errors:
        for error in errors:
            logger.error(f"Service dependency error: {error}")
        raise RuntimeError(f"Service dependency errors: {errors}")

    if app.debug:
        logger.debug(f"Service initialization order: {registry.get_initialization_order()}")

    # Attach registry to app
    app.services = registry

    # Add request tracking middleware
    @app.before_request
    def before_request():
        g.request_id = str(uuid.uuid4())
        logger.info("Request started",
                    request_id=g.request_id,
                    method=request.method,
                    path=request.path)

    @app.after_request
    def after_request(response):
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    # Global error handlers
    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                     request_id=getattr(g, 'request_id', None),
                     error=str(error))
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Resource not found",
                       request_id=getattr(g, 'request_id', None),
                       path=request.path)
        return jsonify({'error': 'Not found'}), 404

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring"""
        from sqlalchemy import text
        health_status = {
            'status': 'healthy',
            'service': 'campaign-broker'
        }

        try:
            # Quick database check
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error(f"Health check database error: {e}")

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    # Register blueprints for routes
    from routes.callback_routes import callback_bp
    from routes.campaign_routes import campaign_api_bp

    app.register_blueprint(callback_bp)
    app.register_blueprint(campaign_api_bp)

    # Register CLI commands
    from scripts import commands
    commands.init_app(app)

    return app


# Service Factory Functions
# These are only called when the service is first requested

def _create_campaign_repository(db_session, config):
    """Create CampaignRepository bound to the scoped session"""
    from repositories.campaign_repository import CampaignRepository
    return CampaignRepository(db_session, in_flight_ttl_seconds=config['IN_FLIGHT_LOCK_TTL_SECONDS'])


def _create_environment_resolver(config):
    """Resolve Gateway environments once, from configuration only"""
    from services.gateway_environment import GatewayEnvironmentResolver
    resolver = GatewayEnvironmentResolver.from_config(config)
    logger.info("Gateway environment resolver initialized", **resolver.resolve().describe())
    return resolver


def _create_gateway_transport(config):
    from services.gateway_transport import RequestsTransport
    return RequestsTransport(timeout=(config['GATEWAY_CONNECT_TIMEOUT'], config['GATEWAY_READ_TIMEOUT']))


def _create_gateway_client(resolver, transport, config):
    """Create GatewayAPIClient with the injected resolver and transport"""
    from services.gateway_api_client import GatewayAPIClient
    logger.info("Initializing GatewayAPIClient")
    return GatewayAPIClient(resolver=resolver, transport=transport,
                            body_log_limit=config['GATEWAY_LOG_BODY_LIMIT'])


def _create_state_machine(config):
    from services.campaign_state_machine import CampaignStateMachine
    logger.info("Initializing CampaignStateMachine", contract_version=config['GATEWAY_CONTRACT_VERSION'])
    return CampaignStateMachine(contract_version=config['GATEWAY_CONTRACT_VERSION'])


def _create_filter_compiler(config):
    from services.filter_compiler import FilterCompiler
    return FilterCompiler(contract_version=config['GATEWAY_CONTRACT_VERSION'])


def _create_scheduler():
    from services.send_time_scheduler import SendTimeScheduler
    return SendTimeScheduler()


def _create_reconciliation_service(campaign_repository, state_machine, config):
    """Create CallbackReconciliationService with repository and state machine"""
    from services.callback_reconciliation_service import CallbackReconciliationService
    logger.info("Initializing CallbackReconciliationService")
    return CallbackReconciliationService(
        campaign_repository=campaign_repository,
        state_machine=state_machine,
        callback_auth_key=config.get('GATEWAY_CALLBACK_AUTH_KEY')
    )


def _create_campaign_orchestrator(config, campaign_repository, gateway_client, state_machine,
                                  filter_compiler, send_time_scheduler, callback_reconciliation,
                                  gateway_environment):
    """Create CampaignOrchestrator with all collaborators"""
    from services.campaign_orchestrator import CampaignOrchestrator
    logger.info("Initializing CampaignOrchestrator")
    return CampaignOrchestrator(
        campaign_repository=campaign_repository,
        gateway_client=gateway_client,
        state_machine=state_machine,
        filter_compiler=filter_compiler,
        scheduler=send_time_scheduler,
        reconciliation_service=callback_reconciliation,
        environment_resolver=gateway_environment,
        callback_base_url=config.get('CALLBACK_BASE_URL', ''),
        company_name=config.get('GATEWAY_COMPANY_NAME', '')
    )
