"""
Apply the result schema migrations without starting the web server.

Usage:
  python migrate.py

This script uses Flask-Migrate (Alembic) to apply schema migrations.
"""

import sys
import traceback


def main():
    import school_result
    from flask_migrate import upgrade

    try:
        print("Applying database migrations...")
        with school_result.app.app_context():
            upgrade(directory='migrations')
        print("✓ Migrations completed successfully.")
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
