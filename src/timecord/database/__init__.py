"""
Database package for Timecord.

- **db_connection.py**: ``ConnectionManager`` owning one aiosqlite connection
  with a single-writer transaction context and a read context.
- **db_schema.py**: ``SchemaManager`` creating tables, indexes and triggers.
"""
