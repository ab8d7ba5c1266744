"""Run one Jira project import from the command line and wait for it.

Usage examples:

    python scripts/run_jira_import.py PROJ --workspace <uuid> --actor admin@example.com \\
        --jira-url https://example.atlassian.net --username me@example.com --token ***
    python scripts/run_jira_import.py PROJ --workspace <uuid> --actor admin@example.com --info
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from uuid import UUID

from sqlalchemy import or_, select

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from jira_migrator.core.config import settings  # noqa: E402
from jira_migrator.core.exceptions import MigratorException  # noqa: E402
from jira_migrator.core.logging import setup_logging  # noqa: E402
from jira_migrator.db.session import SessionLocal  # noqa: E402
from jira_migrator.integrations.jira.schemas import JiraImportRequest, PrioritiesMappingIn  # noqa: E402
from jira_migrator.models.user import User  # noqa: E402
from jira_migrator.services.issues_import import service  # noqa: E402
from jira_migrator.services.issues_import.registry import ImportRegistry  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import a Jira project into a target workspace")
    parser.add_argument("project_key", help="Jira project key, e.g. PROJ")
    parser.add_argument("--workspace", type=UUID, required=True, help="Target workspace id")
    parser.add_argument("--actor", required=True, help="Username or e-mail of the importing user")
    parser.add_argument("--jira-url", default=os.getenv("JIRA_BASE_URL", ""), help="Jira base URL")
    parser.add_argument("--username", default=os.getenv("JIRA_EMAIL", ""), help="Jira login")
    parser.add_argument("--token", default=os.getenv("JIRA_API_TOKEN", ""), help="Jira API token")
    parser.add_argument("--block-link", default="", help="Link type id mapped to blockers")
    parser.add_argument("--relates-link", action="append", default=[], help="Link type id mapped to related issues")
    parser.add_argument("--urgent", default="", help="Jira priority id mapped to urgent")
    parser.add_argument("--high", default="", help="Jira priority id mapped to high")
    parser.add_argument("--medium", default="", help="Jira priority id mapped to medium")
    parser.add_argument("--low", default="", help="Jira priority id mapped to low")
    parser.add_argument("--info", action="store_true", help="Only print projects, link types and priorities")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    setup_logging(settings.LOG_LEVEL)

    if not (args.jira_url and args.username and args.token):
        print("Jira URL, username and token are required.")
        return 2

    if args.info:
        info = service.get_jira_info(args.username, args.token, args.jira_url)
        print(json.dumps(info.model_dump(), indent=2, ensure_ascii=False))
        return 0

    payload = JiraImportRequest(
        username=args.username,
        token=args.token,
        jira_url=args.jira_url,
        target_workspace_id=args.workspace,
        block_link_id=args.block_link,
        relates_link_ids=args.relates_link,
        priorities_mapping=PrioritiesMappingIn(
            urgent_id=args.urgent,
            high_id=args.high,
            medium_id=args.medium,
            low_id=args.low,
        ),
    )

    registry = ImportRegistry(SessionLocal)
    db = SessionLocal()
    try:
        actor = db.scalar(select(User).where(or_(User.email == args.actor, User.username == args.actor)))
        if actor is None:
            print(f"User not found: {args.actor}")
            return 2
        try:
            context = service.start_import(db, registry, actor, args.project_key, payload, background=False)
        except MigratorException as exc:
            print(f"Import rejected: {exc.error_code} {exc.message}")
            return 1
    finally:
        db.close()

    status = registry.get_user_import_status(context.id, actor.id)
    print(json.dumps(status.model_dump(mode="json"), indent=2, ensure_ascii=False))
    return 0 if status.state == "finished" else 1


if __name__ == "__main__":
    raise SystemExit(main())
