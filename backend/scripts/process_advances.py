"""CLI script running one catch-up pass of strict-mode week advances.

Intended for an external scheduler (cron, k8s CronJob).
Usage: python scripts/process_advances.py [--loop]
"""
import sys
import argparse
import json
import logging
import time
import pathlib
# Ensure `backend/` is on sys.path so `exam_prep` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from exam_prep.config import ProgressionConfig, settings
from exam_prep.database import engine, create_db_and_tables
from exam_prep.jobs import AdvanceScheduler


def main(loop: bool = False) -> int:
    """Advance every strict user whose window expired.

    With `--loop` the pass repeats every QS_ADVANCE_CHECK_INTERVAL_MS until
    interrupted. Returns a non-zero exit code when any advance failed.
    """
    logging.basicConfig(level=settings.LOG_LEVEL)
    config = ProgressionConfig.from_env()
    create_db_and_tables()
    scheduler = AdvanceScheduler(engine, config)
    if loop:
        scheduler.start()
        try:
            while scheduler.running:
                time.sleep(1.0)
        except KeyboardInterrupt:
            scheduler.stop()
        return 0
    result = scheduler.run_once()
    print(json.dumps(result))
    return 1 if result["errors"] else 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--loop', action='store_true', help='keep running on the configured interval')
    args = parser.parse_args()
    sys.exit(main(loop=args.loop))
