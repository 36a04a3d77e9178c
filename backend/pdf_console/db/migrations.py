"""
Database migration helper.

Provides a simple create_tables function to initialize the database schema.

Usage:
    python -m pdf_console.db.migrations
    or
    from pdf_console.db.migrations import create_tables
    create_tables()
"""

from .db import init_db, get_database_url


def create_tables():
    """
    Create all database tables.

    Reads DATABASE_URL from environment. Existing tables are left as they are.
    """
    print(f"Initializing database at: {get_database_url()}")
    init_db()
    print("Database tables created successfully.")


if __name__ == "__main__":
    create_tables()
