"""
APScheduler entrypoint for the polling container.

Runs poll_job every `poll_interval_seconds` (default 5 minutes), first run
immediately. max_instances=1 + coalesce keep cycles strictly sequential: a slow
cycle delays the next one instead of overlapping it.
"""
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from apps.alert import send
from apps.jobs import CONFIG_PATH, build_runtime, poll_job
from core.logging import configure_logging
from signals.errors import PartialExecutionFailure

configure_logging()

ctx, source, venue, recorder = build_runtime(CONFIG_PATH)


def _poll():
    try:
        poll_job(ctx, source, venue, recorder)
    except PartialExecutionFailure:
        # already alerted and persisted as a halt; later cycles only record telemetry
        logging.exception("%s: partial execution", ctx.cfg.pair_id)
    except Exception as e:
        logging.exception("%s: poll job failed", ctx.cfg.pair_id)
        send(f"❌ {ctx.cfg.pair_id}: poll job failed – {e}")


scheduler = BlockingScheduler(timezone="UTC")

scheduler.add_job(
    _poll,
    IntervalTrigger(seconds=ctx.cfg.poll_interval_seconds, timezone="UTC"),
    id="poll_job",
    name=f"Pairs poll {ctx.cfg.pair_id}",
    next_run_time=datetime.now(timezone.utc),
    max_instances=1,
    coalesce=True,
)

if __name__ == "__main__":
    logging.info(
        "Scheduler starting – %s every %ss", ctx.cfg.pair_id, ctx.cfg.poll_interval_seconds
    )
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logging.info("Scheduler stopped.")
