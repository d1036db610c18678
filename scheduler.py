import logging
from extensions import scheduler
from rankings import calculate_organization_rankings

logger = logging.getLogger(__name__)

RANKING_REFRESH_JOB_ID = 'ranking_refresh'


def init_scheduler(app):
    """ Starts the background clock (called by create_app outside tests). """
    if scheduler.running:
        return
    # create_app() already bound the scheduler; jobs need app.app_context()
    scheduler.app = app
    scheduler.start()
    logger.info("Scheduler started: ranking refresh + nightly rankings")


def refresh_rankings_safely():
    """
    Best-effort ranking recalculation.
    Failures are logged and swallowed; nothing is retried.
    """
    try:
        return calculate_organization_rankings(skip_auth=True)
    except Exception:
        logger.exception("Auto-ranking calculation failed")
        return None


# ==========================================
#  TASK 1: RANKING REFRESH (after a collection)
# ==========================================
def ranking_refresh_job():
    # Runs in the background: needs its own app context
    with scheduler.app.app_context():
        refresh_rankings_safely()


def dispatch_ranking_refresh():
    """
    Fire-and-forget trigger sent after every ClaimCollected event.

    With a running scheduler the refresh is queued as a one-off job (bursts
    of collections collapse into one pending run). Without one (tests,
    scripts) it runs inline; the caller's transaction is already committed
    either way.
    """
    if scheduler.running:
        try:
            scheduler.add_job(
                id=RANKING_REFRESH_JOB_ID,
                func=ranking_refresh_job,
                trigger='date',
                replace_existing=True,
                misfire_grace_time=None,
            )
            return 'queued'
        except Exception:
            logger.exception("Could not queue ranking refresh")
            return 'failed'

    refresh_rankings_safely()
    return 'inline'


# ==========================================
#  TASK 2: NIGHTLY RANKINGS
# ==========================================
# Runs every day at 03:00 so expired listings and the 30-day window roll over
@scheduler.task('cron', id='nightly_rankings', hour=3, minute=0)
def nightly_rankings_job():
    with scheduler.app.app_context():
        result = refresh_rankings_safely()
        if result:
            logger.info("Nightly rankings: %s", result['message'])
