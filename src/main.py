"""Command-line entry point for operating the classroom roster backend.

Subcommands cover what is done out of band rather than through the API:
creating tables, creating classes and granting admin rights, the pending
signup sweep, importing legacy user documents and running the server.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from config import API_HOST, API_PORT
from core.database import SessionLocal, init_db
from core.exceptions import ClassroomError
from core.logging_config import setup_logging
from models.enrollment import ROLE_ADMIN
from utils.class_manager import ClassManager
from utils.converters import follow_to_enrollments
from utils.email_sender import build_email_sender
from utils.enrollment_manager import EnrollmentManager
from utils.signup_manager import SignupManager
from utils.user_manager import UserManager

logger = logging.getLogger(__name__)


def cmd_init_db(args: argparse.Namespace) -> int:
    init_db()
    print("Database tables created.")
    return 0


def cmd_create_class(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        class_model = ClassManager(db).create_class(args.directoryname, args.publicname)
        print(f"Created class {class_model.class_id} ({class_model.directoryname})")
        if args.admin_email:
            _grant_admin(db, args.admin_email, class_model.class_id)
    finally:
        db.close()
    return 0


def cmd_grant_admin(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        _grant_admin(db, args.email, args.class_id)
    finally:
        db.close()
    return 0


def _grant_admin(db, email: str, class_id: str) -> None:
    """Make the account admin of the class and allow it to create classes."""
    user_manager = UserManager(db)
    model = user_manager.get_model_by_email(email)
    if model is None:
        raise ClassroomError(f"No account for {email}")
    ClassManager(db).get_class(class_id)
    EnrollmentManager(db).grant_admin(model.user_id, class_id)
    user_manager.set_status(model.user_id, "prof")
    print(f"{email} is now admin of class {class_id}")


def cmd_purge_expired(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        purged = SignupManager(db, build_email_sender()).purge_expired_signups()
    finally:
        db.close()
    print(f"Purged {purged} expired pending signup(s).")
    return 0


def cmd_import_legacy(args: argparse.Namespace) -> int:
    """Import users from a JSON export (a list of user documents).

    Each document's ``follow`` list may mix bare class ids and
    ``{"classe": ..., "role": ...}`` entries; both restore an enrollment.
    Enrollments in unknown classes are skipped.
    """
    with open(Path(args.path), "r", encoding="utf-8") as f:
        documents = json.load(f)
    if not isinstance(documents, list):
        raise ClassroomError("Expected a JSON list of user documents")

    db = SessionLocal()
    imported, skipped, enrollments_restored = 0, 0, 0
    try:
        user_manager = UserManager(db)
        class_manager = ClassManager(db)
        enrollment_manager = EnrollmentManager(db)
        for doc in documents:
            model = user_manager.import_legacy_user(doc) if isinstance(doc, dict) else None
            if model is None:
                skipped += 1
                continue
            imported += 1
            for enrollment in follow_to_enrollments(doc.get("follow")):
                try:
                    class_manager.get_class(enrollment.class_id)
                except ClassroomError:
                    logger.warning(
                        "User %s follows unknown class %s, skipped",
                        model.user_id, enrollment.class_id,
                    )
                    continue
                if enrollment.role == ROLE_ADMIN:
                    enrollment_manager.grant_admin(model.user_id, enrollment.class_id)
                else:
                    enrollment_manager.enroll(model.user_id, enrollment.class_id)
                enrollments_restored += 1
    finally:
        db.close()

    print(
        f"Imported {imported} user(s), skipped {skipped}, "
        f"restored {enrollments_restored} enrollment(s)."
    )
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    server_url = f"http://{args.host}:{args.port}"
    print(f"Serving on {server_url} (docs: {server_url}/docs)")
    uvicorn.run("app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="classroom-roster",
        description="Operate the classroom roster backend.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("init-db", help="Create database tables")
    p.set_defaults(func=cmd_init_db)

    p = subparsers.add_parser("create-class", help="Create a class")
    p.add_argument("directoryname")
    p.add_argument("publicname")
    p.add_argument("--admin-email", default=None, help="Account to make admin of the class")
    p.set_defaults(func=cmd_create_class)

    p = subparsers.add_parser("grant-admin", help="Make an account admin of a class")
    p.add_argument("email")
    p.add_argument("class_id")
    p.set_defaults(func=cmd_grant_admin)

    p = subparsers.add_parser("purge-expired", help="Delete expired pending signups")
    p.set_defaults(func=cmd_purge_expired)

    p = subparsers.add_parser("import-legacy", help="Import users from a JSON export")
    p.add_argument("path")
    p.set_defaults(func=cmd_import_legacy)

    p = subparsers.add_parser("serve", help="Run the API server")
    p.add_argument("--host", default=API_HOST)
    p.add_argument("--port", type=int, default=API_PORT)
    p.add_argument("--reload", action="store_true")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    if args.command != "init-db":
        init_db()
    try:
        return args.func(args)
    except ClassroomError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
