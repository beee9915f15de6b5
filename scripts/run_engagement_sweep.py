import argparse
import json
from pathlib import Path
from typing import Optional

from wellio.core.scoring import update_all_clients_progress
from wellio.db.session import DB_PATH, SessionLocal, configure_database, create_tables
from wellio.services.engagement_service import evaluate_all_clients


def resolve_db_path(override: Optional[str]) -> Path:
    if override:
        return Path(override).expanduser().resolve()
    return Path(DB_PATH).expanduser().resolve()


def run_sweep(coach_id: Optional[int], skip_progress: bool = False) -> dict:
    db = SessionLocal()
    try:
        summary: dict = {"coach_id": coach_id}
        if not skip_progress:
            progress = update_all_clients_progress(db, coach_id=coach_id)
            summary["progress"] = {
                "updated": len(progress.updated),
                "failures": {str(k): v for k, v in progress.failures.items()},
            }
        engagement = evaluate_all_clients(db, coach_id=coach_id)
        summary["engagement"] = {
            "evaluated": engagement.evaluated,
            "created": engagement.created,
            "escalated": engagement.escalated,
            "failures": {str(k): v for k, v in engagement.failures.items()},
        }
        return summary
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Recalculate client progress and evaluate engagement triggers (cron entry point)."
    )
    parser.add_argument(
        "--coach-id",
        type=int,
        default=None,
        help="Only sweep clients of this coach. Defaults to every active client.",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="Override SQLite DB path. Defaults to DB_PATH env or app default.",
    )
    parser.add_argument(
        "--skip-progress",
        action="store_true",
        help="Only evaluate engagement triggers.",
    )
    args = parser.parse_args()

    db_path = resolve_db_path(args.db_path)
    if not db_path.exists():
        print(f"DB not found: {db_path}")
        return 1
    if args.db_path:
        configure_database(str(db_path))
    create_tables()

    summary = run_sweep(args.coach_id, skip_progress=args.skip_progress)
    print(json.dumps(summary, indent=2, sort_keys=True))
    failed = summary.get("progress", {}).get("failures") or summary["engagement"]["failures"]
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
