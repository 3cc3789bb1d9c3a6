import argparse
from typing import List

from . import __version__
from .config import load_settings
from .database import create_engine_for, init_database, make_session_factory
from .errors import MergeError
from .integrity import check_integrity, summarize
from .levels import MERGE_LEVELS, Level
from .merge import TerroirMerger
from .schema import validate_merge_request


def merge_status_message(level: Level, leader_name: str, followers_merged: int) -> str:
    if followers_merged <= 0:
        return f"Selected {level.plural} are already consolidated."
    noun = level.singular if followers_merged == 1 else level.plural
    return f"Merged {followers_merged} {noun} into {leader_name}."


def _split_ids(raw: str) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def cmd_init_db(args: argparse.Namespace) -> None:
    init_database(args.db)
    print(f"Database ready: {args.db}")


def cmd_merge(args: argparse.Namespace) -> None:
    level = MERGE_LEVELS[args.level]
    entity_ids = _split_ids(args.ids)

    errors = validate_merge_request(level, args.leader, entity_ids)
    if errors:
        for e in errors:
            print(e)
        raise SystemExit(2)

    settings = load_settings()
    engine = create_engine_for(args.db, sqlite_begin=settings.sqlite_begin)
    merger = TerroirMerger(make_session_factory(engine), settings=settings)
    try:
        result = merger.merge(level, args.leader, entity_ids)
    except MergeError as e:
        print(str(e))
        raise SystemExit(1)
    finally:
        engine.dispose()

    print(merge_status_message(level, result.leader_name, result.followers_merged))


def cmd_check(args: argparse.Namespace) -> None:
    engine = create_engine_for(args.db)
    session = make_session_factory(engine)()
    try:
        report = check_integrity(session)
    finally:
        session.close()
        engine.dispose()

    if report.ok:
        print("No duplicate siblings or orphaned rows found.")
        return
    for kind, line in summarize(report):
        print(f"[{kind}] {line}")
    raise SystemExit(1)


def main(argv=None):
    settings = load_settings()
    parser = argparse.ArgumentParser(prog="terroir", description="Terroir catalogue merge tools")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    init = subparsers.add_parser("init-db", help="Create the catalogue tables")
    init.add_argument("--db", default=settings.database_url, help="Database URL (default: TERROIR_DATABASE_URL)")
    init.set_defaults(func=cmd_init_db)

    mrg = subparsers.add_parser("merge", help="Merge records into a leader at one hierarchy level")
    mrg.add_argument("level", choices=sorted(MERGE_LEVELS), help="Hierarchy level to merge")
    mrg.add_argument("--leader", required=True, help="Id of the record to keep")
    mrg.add_argument("--ids", required=True, help="Comma-separated ids of the selected records (may include the leader)")
    mrg.add_argument("--db", default=settings.database_url, help="Database URL (default: TERROIR_DATABASE_URL)")
    mrg.set_defaults(func=cmd_merge)

    chk = subparsers.add_parser("check", help="Report duplicate siblings and orphaned rows")
    chk.add_argument("--db", default=settings.database_url, help="Database URL (default: TERROIR_DATABASE_URL)")
    chk.set_defaults(func=cmd_check)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
