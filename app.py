# app.py

from flask import Flask
from config import get_config
from extensions import db, migrate
import os
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="engagement-engine", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize app with config
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    setup_logging(app_name="engagement-engine", log_level=app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(app)
    migrate.init_app(app, db)

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        with app.app_context():
            _enable_sqlite_savepoints(db.engine)

    # Models must be imported before create_all / autogenerate can see them
    import crm_database  # noqa: F401

    from services.registry import ServiceRegistry
    registry = ServiceRegistry()

    registry.register_factory('db_session', lambda: db.session)

    # Repositories
    registry.register_factory(
        'deal_repository',
        lambda db_session: _create_deal_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'session_repository',
        lambda db_session: _create_session_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'event_repository',
        lambda db_session: _create_event_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'task_repository',
        lambda db_session: _create_task_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'milestone_repository',
        lambda db_session: _create_milestone_repository(db_session),
        dependencies=['db_session']
    )

    # Engine services
    registry.register_factory('automation_config', lambda: _create_automation_config())
    registry.register_factory('scoring', lambda: _create_scoring_engine())
    registry.register_factory('milestone_publisher', lambda: _create_milestone_publisher())
    registry.register_factory(
        'stage_machine',
        lambda deal_repository: _create_stage_machine(deal_repository),
        dependencies=['deal_repository']
    )
    registry.register_factory(
        'rule_engine',
        lambda automation_config, task_repository: _create_rule_engine(automation_config, task_repository),
        dependencies=['automation_config', 'task_repository']
    )
    registry.register_factory(
        'orchestrator',
        lambda deal_repository, session_repository, event_repository, task_repository,
        milestone_repository, rule_engine, scoring, stage_machine, milestone_publisher:
            _create_orchestrator(app.config, deal_repository, session_repository, event_repository,
                                 task_repository, milestone_repository, rule_engine, scoring,
                                 stage_machine, milestone_publisher),
        dependencies=['deal_repository', 'session_repository', 'event_repository', 'task_repository',
                      'milestone_repository', 'rule_engine', 'scoring', 'stage_machine',
                      'milestone_publisher']
    )

    # Validate all dependencies are registered
    errors = registry.validate_dependencies()
    if errors:
        for error in errors:
            logger.error(f"Service dependency error: {error}")
        raise RuntimeError(f"Service dependency errors: {errors}")

    # Attach registry to app
    app.services = registry

    # Register CLI commands
    from scripts import commands
    commands.init_app(app)

    logger.info("Engagement engine initialized", env=app.config.get('ENV_NAME'))
    return app


def _enable_sqlite_savepoints(engine):
    """
    Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on pysqlite.
    Task inserts run in savepoints.
    """
    from sqlalchemy import event

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


# Service Factory Functions
# These are only called when the service is first requested

def _create_deal_repository(db_session):
    from repositories.deal_repository import DealRepository
    return DealRepository(session=db_session)


def _create_session_repository(db_session):
    from repositories.browsing_session_repository import BrowsingSessionRepository
    return BrowsingSessionRepository(session=db_session)


def _create_event_repository(db_session):
    from repositories.interaction_event_repository import InteractionEventRepository
    return InteractionEventRepository(session=db_session)


def _create_task_repository(db_session):
    from repositories.task_repository import TaskRepository
    return TaskRepository(session=db_session)


def _create_milestone_repository(db_session):
    from repositories.milestone_repository import DealMilestoneRepository
    return DealMilestoneRepository(session=db_session)


def _create_automation_config():
    from services.automation_rules import AutomationConfig
    return AutomationConfig.default()


def _create_scoring_engine():
    from services.scoring_service import ScoringEngine
    return ScoringEngine()


def _create_milestone_publisher():
    from services.milestone_publisher import MilestonePublisher
    return MilestonePublisher()


def _create_stage_machine(deal_repository):
    from services.deal_stage_service import DealStageMachine
    return DealStageMachine(deal_repository=deal_repository)


def _create_rule_engine(automation_config, task_repository):
    from services.task_automation_service import AutomationRuleEngine
    return AutomationRuleEngine(config=automation_config, task_repository=task_repository)


def _create_orchestrator(config, deal_repository, session_repository, event_repository, task_repository,
                         milestone_repository, rule_engine, scoring, stage_machine, milestone_publisher):
    """Create EngagementOrchestrator with dependencies"""
    from services.engagement_orchestrator import EngagementOrchestrator
    return EngagementOrchestrator(
        deal_repository=deal_repository,
        session_repository=session_repository,
        event_repository=event_repository,
        task_repository=task_repository,
        milestone_repository=milestone_repository,
        rule_engine=rule_engine,
        scoring_engine=scoring,
        stage_machine=stage_machine,
        publisher=milestone_publisher,
        conflict_retry_limit=config.get('CONFLICT_RETRY_LIMIT', 3),
        lock_timeout=config.get('DEAL_LOCK_TIMEOUT_SECONDS', 10),
        inactivity_minutes=config.get('SESSION_INACTIVITY_MINUTES', 30),
    )


if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        db.create_all()
