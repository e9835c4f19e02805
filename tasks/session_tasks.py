"""
Celery tasks for browsing-session cleanup and deal inactivity sweeps
"""

from utils.datetime_utils import utc_now
from celery_worker import celery
from app import create_app
from logging_config import get_logger
from services.common.result import ErrorCode

logger = get_logger(__name__)

# Lock contention and version conflicts clear up on their own
RETRYABLE_CODES = {ErrorCode.TIMEOUT, ErrorCode.CONCURRENCY_CONFLICT, ErrorCode.PERSISTENCE_FAILURE}


@celery.task(bind=True)
def finalize_idle_sessions(self):
    """
    Close every browsing session with no activity inside the inactivity window.

    Each closed session is scored and fed through stage progression and
    task automation exactly as an explicit end_session would be.
    """
    app = create_app()

    with app.app_context():
        orchestrator = app.services.get('orchestrator')
        result = orchestrator.finalize_inactive_sessions()

        if result.is_failure:
            logger.error("Session cleanup failed", error=result.error, code=result.error_code)
            if result.error_code in RETRYABLE_CODES:
                raise self.retry(countdown=60 * (2 ** self.request.retries), max_retries=3)
            return {
                'success': False,
                'error': result.error,
                'timestamp': utc_now().isoformat()
            }

        finalized = result.data['finalized']
        failed = result.data['failed']
        logger.info(
            "Session cleanup completed",
            checked=(result.metadata or {}).get('checked', 0),
            finalized=len(finalized),
            failed=len(failed)
        )

        return {
            'success': True,
            'finalized': finalized,
            'failed': failed,
            'timestamp': utc_now().isoformat()
        }


@celery.task(bind=True)
def sweep_inactive_deals(self):
    """Fire inactivity triggers for open deals that have gone quiet"""
    app = create_app()

    with app.app_context():
        orchestrator = app.services.get('orchestrator')
        result = orchestrator.sweep_inactive_deals()

        if result.is_failure:
            logger.error("Inactivity sweep failed", error=result.error, code=result.error_code)
            if result.error_code in RETRYABLE_CODES:
                raise self.retry(countdown=60 * (2 ** self.request.retries), max_retries=3)
            return {
                'success': False,
                'error': result.error,
                'timestamp': utc_now().isoformat()
            }

        logger.info(
            "Inactivity sweep completed",
            swept=len(result.data['swept']),
            failed=len(result.data['failed'])
        )

        return {
            'success': True,
            'swept': result.data['swept'],
            'failed': result.data['failed'],
            'timestamp': utc_now().isoformat()
        }


@celery.task(bind=True)
def end_session(self, session_id, link_id, feedback=None):
    """Finalize a single session off the request path"""
    app = create_app()

    with app.app_context():
        orchestrator = app.services.get('orchestrator')
        result = orchestrator.end_session(session_id, link_id, feedback=feedback)

        if result.is_failure:
            logger.warning(
                "End session failed",
                session_id=session_id,
                error=result.error,
                code=result.error_code
            )
            if result.error_code in RETRYABLE_CODES:
                raise self.retry(countdown=5 * (2 ** self.request.retries), max_retries=3)
            return {
                'success': False,
                'error': result.error,
                'error_code': result.error_code.value if result.error_code else None
            }

        update = result.data
        return {
            'success': True,
            'deal_id': update.deal_id,
            'session_finalized': update.session_finalized,
            'score': update.deal.get('engagement_score'),
            'tasks_created': len(update.tasks)
        }
