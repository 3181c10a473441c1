from settings import Settings
from index_store import connect_store, StoreError
from index_naming import families_for
from rollover import RolloverEngine, parse_conditions, LOOKBACK_UNITS
from index_cleaner import IndexCleaner, CleanResult
import argparse
import urllib3
import time
import os
import sys
from typing import Mapping, Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.executors.pool import ThreadPoolExecutor
from loguru import logger

# Configure loguru log level based on environment variable
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logger.remove()
logger.add(sys.stdout, level=log_level, format="{time:YYYY-MM-DD HH:mm:ss.SSS} | <level>{level: <8}</level> | {name}:{function}:{line} - {message}", colorize=True)


def str2bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("true", "1", "yes", "y", "t")


def number_of_days(value: str) -> int:
    """argparse type for the retention window"""
    try:
        days = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"number of days must be an integer, got '{value}'")
    if days < 0:
        raise argparse.ArgumentTypeError(f"number of days must be >= 0, got {days}")
    return days


def load_settings(env: Mapping[str, str] = os.environ) -> Settings:
    """Build settings from environment variables"""
    url = env.get("URL")
    if not url:
        raise ValueError("URL environment variable is required")

    settings = Settings(
        url=url,
        cert_file_path=env.get("CERT_FILE_PATH"),
        key_file_path=env.get("KEY_FILE_PATH"),
        username=env.get("ES_USERNAME"),
        password=env.get("ES_PASSWORD"),
        ca_file_path=env.get("ES_TLS_CA"),
        skip_host_verify=str2bool(env.get("ES_TLS_SKIP_HOST_VERIFY", "true")),
        index_prefix=env.get("INDEX_PREFIX", ""),
        archive=str2bool(env.get("ARCHIVE", "false")),
        rollover=str2bool(env.get("ROLLOVER", "false")),
        static_archive=str2bool(env.get("ARCHIVE_STATIC", "false")),
        timeout=int(env.get("TIMEOUT", "120")),
        shards=int(env.get("SHARDS", "5")),
        replicas=int(env.get("REPLICAS", "1")),
        rollover_conditions=parse_conditions(env["CONDITIONS"]) if "CONDITIONS" in env else None,
        lookback_unit=env.get("UNIT", "days"),
        lookback_unit_count=int(env.get("UNIT_COUNT", "1")),
        delete_workers=int(env.get("DELETE_WORKERS", "4")),
        retention_days=int(env.get("NUMBER_OF_DAYS", "7")),
    )
    if settings.lookback_unit not in LOOKBACK_UNITS:
        raise ValueError(f"UNIT must be one of {sorted(LOOKBACK_UNITS)}, got {settings.lookback_unit}")
    return settings


def init_indices(settings: Settings) -> None:
    """Create the first index and aliases of every family in scope"""
    logger.info(f"Initializing indices (prefix='{settings.index_prefix}', archive={settings.archive})")
    engine = RolloverEngine(connect_store(settings), settings.shards, settings.replicas)
    for family in families_for(settings.archive):
        target = engine.init(family, settings.index_prefix, settings.static_archive)
        logger.info(f"Family {family.value} writes to {target}")
    logger.info("Initialization completed")


def rollover_indices(settings: Settings) -> None:
    """Roll every family in scope whose conditions are met"""
    logger.info(f"Checking for rollover (conditions: {settings.rollover_conditions})")
    engine = RolloverEngine(connect_store(settings), settings.shards, settings.replicas)
    for family in families_for(settings.archive):
        engine.rollover(family, settings.index_prefix, settings.rollover_conditions)
    logger.info("Rollover check completed")


def lookback_indices(settings: Settings) -> None:
    """Shrink read aliases to the configured lookback period"""
    logger.info(f"Removing indices older than {settings.lookback_unit_count} {settings.lookback_unit} from read aliases")
    engine = RolloverEngine(connect_store(settings), settings.shards, settings.replicas)
    for family in families_for(settings.archive):
        engine.lookback(family, settings.index_prefix, settings.lookback_unit, settings.lookback_unit_count)
    logger.info("Lookback completed")


def clean_indices(settings: Settings, window_days: int) -> CleanResult:
    """Delete indices past the retention window"""
    cleaner = IndexCleaner(connect_store(settings), max_workers=settings.delete_workers)
    result = cleaner.clean(settings.index_prefix, window_days, settings.rollover, settings.archive)
    for index_name, error in result.failures.items():
        logger.error(f"Failed to delete {index_name}: {error}")
    logger.info(f"Removed {result.deleted_count} indices")
    return result


def scheduled_job(job, *args) -> None:
    """Run a job from the scheduler without letting a store failure kill the scheduler thread"""
    try:
        job(*args)
    except StoreError as e:
        logger.error(f"Scheduled {job.__name__} failed during {e.operation}: {e}")


if __name__ == "__main__":
    #Pesky self signed certs
    urllib3.disable_warnings()
    logger.info("Starting index lifecycle script")
    parser = argparse.ArgumentParser(description="Rollover and retention management for Jaeger indices")

    choices={
             "init",
             "rollover",
             "lookback",
             "clean",
             "start-management"
             }

    parser.add_argument('-action',required=True,choices=choices,help="What do you want me to do?")
    parser.add_argument('days', nargs='?', type=number_of_days, help="retention window in days for the clean action")
    args = parser.parse_args()

    try:
        settings = load_settings()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        exit(1)

    print(f"URL: {settings.url}\nIndex prefix: '{settings.index_prefix}'\nArchive: {settings.archive}\nRollover: {settings.rollover}\nTimeout: {settings.timeout}s\nConditions: {settings.rollover_conditions}")

    action: str = args.action

    try:
        if action == "init":
            init_indices(settings)
        elif action == "rollover":
            rollover_indices(settings)
        elif action == "lookback":
            lookback_indices(settings)
        elif action == "clean":
            if args.days is None:
                logger.error("Number of days required for clean but not provided")
                parser.print_usage()
                exit(1)
            if not clean_indices(settings, args.days).success:
                exit(1)
        elif action == "start-management":
            init_indices(settings)

            logger.info("Starting background scheduler for lifecycle tasks")
            scheduler = BackgroundScheduler(executors={'default': ThreadPoolExecutor(4)})

            logger.info("Scheduling rollover checks every 15 minutes")
            scheduler.add_job(scheduled_job, "cron", args=[rollover_indices, settings], minute="*/15", max_instances=1)

            logger.info("Scheduling read alias lookback for daily execution at 00:30")
            scheduler.add_job(scheduled_job, "cron", args=[lookback_indices, settings], hour=0, minute=30, max_instances=1)

            logger.info(f"Scheduling cleanup of indices older than {settings.retention_days} days for daily execution at 01:00")
            scheduler.add_job(scheduled_job, "cron", args=[clean_indices, settings, settings.retention_days], hour=1, max_instances=1)

            scheduler.start()
            logger.info("Background scheduler started successfully")
            try:
                while True:
                    time.sleep(1)
            except (KeyboardInterrupt, SystemExit):
                logger.info("Received shutdown signal, stopping scheduler")
                scheduler.shutdown()
                logger.info("Scheduler shutdown completed")
    except StoreError as e:
        logger.error(f"{action} failed during {e.operation}: {e}")
        exit(1)
