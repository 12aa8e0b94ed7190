import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from usermanager.config import load_settings, resolve_database_path
from usermanager.database import Database, StoreError, UserValidationError
from usermanager.models import ROLE_VALUES, Role


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Add a user record directly to the user database")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--role",
        choices=ROLE_VALUES,
        default=None,
        help="Role for the user (defaults to DEFAULT_ROLE or 'user')",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to DATABASE_PATH or data/users.sqlite3)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = load_settings()

    db_path = resolve_database_path(args.db_path) if args.db_path else settings.database_path
    database = Database(db_path)
    database.initialize()

    role = Role(args.role) if args.role else settings.default_role

    try:
        user = database.create_user(args.name, args.email, role, max_users=settings.max_users)
    except UserValidationError as exc:  # duplicates, capacity, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except StoreError as exc:
        print(f"Error: could not write to {db_path}: {exc}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}> ({user.role.value})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
