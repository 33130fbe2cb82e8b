import argparse
import asyncio
import json
import os
import signal
import sys

from utils.logger import logger
from config import (
    DATABASE_PATH, LOGS_DIR, REPORTS_DIR, KURDISTAN_PASSES, RETENTION_DAYS
)

from db.repository import repository
from db.s3_sync import s3_sync
from services.candidate_service import candidate_service
from services.social_data_collector import social_data_collector
from services.web_scraping_service import web_scraping_service
from workers.data_collection_worker import data_collection_worker


async def setup_directories():
    for directory in (LOGS_DIR, REPORTS_DIR, os.path.dirname(os.path.abspath(DATABASE_PATH))):
        os.makedirs(directory, exist_ok=True)


async def run_worker():
    """
    Starts the collection worker and blocks until SIGINT/SIGTERM.
    """
    await s3_sync.download_latest()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # not supported on Windows
            pass

    await data_collection_worker.start()
    try:
        await stop_event.wait()
    finally:
        await data_collection_worker.stop()
        await s3_sync.upload_changes()
    return {"status": 'stopped'}


async def run_collect(kurdistan_only=False):
    if kurdistan_only:
        return await social_data_collector.collect_kurdistan_priority(passes=KURDISTAN_PASSES)
    return await social_data_collector.collect_by_priority()


async def run_scrape():
    return await web_scraping_service.start_scraping()


async def run_api():
    return await social_data_collector.collect_from_apis()


async def run_report(save=False):
    return data_collection_worker.monitor.generate_report(save=save)


async def run_cleanup():
    return await data_collection_worker.cleanup_expired_data()


async def run_seed_candidates(path):
    if not os.path.exists(path):
        raise FileNotFoundError(f"Candidate file not found: {path}")
    count = candidate_service.seed_from_csv(path)
    return {"seeded": count}


def build_parser():
    parser = argparse.ArgumentParser(
        prog='hamlat',
        description='Priority-based election mention collector for Iraq and the Kurdistan Region'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('run', help='Start the scheduled collection worker')

    collect = subparsers.add_parser('collect', help='Run one priority collection cycle')
    collect.add_argument('--kurdistan', action='store_true', help='Only collect the Kurdistan governorates')

    subparsers.add_parser('scrape', help='Run one web scraping and RSS pass')
    subparsers.add_parser('api', help='Run one default-query pass over every platform')

    report = subparsers.add_parser('report', help='Print the monitoring report')
    report.add_argument('--save', action='store_true', help=f'Also write the report as JSON to {REPORTS_DIR}')

    subparsers.add_parser('cleanup', help=f'Delete mentions older than {RETENTION_DAYS} days')

    seed = subparsers.add_parser('seed-candidates', help='Load candidates from a CSV file')
    seed.add_argument('file', help='CSV with name, name_ku_sorani, name_ar, name_en, party, governorate, position')

    subparsers.add_parser('stats', help='Print database row counts')
    return parser


async def main(argv=None):
    args = build_parser().parse_args(argv)
    await setup_directories()

    if args.command == 'run':
        return await run_worker()
    if args.command == 'collect':
        return await run_collect(kurdistan_only=args.kurdistan)
    if args.command == 'scrape':
        return await run_scrape()
    if args.command == 'api':
        return await run_api()
    if args.command == 'report':
        return await run_report(save=args.save)
    if args.command == 'cleanup':
        return await run_cleanup()
    if args.command == 'seed-candidates':
        return await run_seed_candidates(args.file)
    if args.command == 'stats':
        stats = repository.database_stats()
        print(json.dumps(stats, indent=2, ensure_ascii=False))
        return stats


def cli(argv=None):
    try:
        asyncio.run(main(argv))
    except KeyboardInterrupt:
        logger.log('Interrupted')
    except Exception as error:
        logger.error(f'❌ HamlatAI collector failed: {error}')
        sys.exit(1)


if __name__ == "__main__":
    cli()
