"""PostgreSQL connection helpers shared by the store and the maintenance scripts."""

import os
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import DictCursor
from dotenv import load_dotenv

load_dotenv()


def resolve_database_url(database_url=None):
    url = (database_url or os.getenv('DATABASE_URL') or '').strip()
    if not url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    if not url.startswith(('postgres://', 'postgresql://')):
        raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")
    return url


def _adapt_query(query):
    return query.replace('?', '%s')


def db_execute(cursor, query, params=None):
    if params is None:
        return cursor.execute(_adapt_query(query))
    return cursor.execute(_adapt_query(query), params)


def get_db(database_url=None):
    """Create a PostgreSQL DB connection."""
    return psycopg2.connect(resolve_database_url(database_url), cursor_factory=DictCursor, connect_timeout=10)


@contextmanager
def db_connection(database_url=None, commit=False):
    """Context manager for PostgreSQL connections with optional commit."""
    conn = get_db(database_url)
    try:
        yield conn
        if commit:
            conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def rows_to_dicts(rows):
    return [dict(row) for row in rows or []]


if __name__ == "__main__":
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, "SELECT COUNT(*) FROM result_sheets")
        print("Result sheets:", c.fetchone()[0])
