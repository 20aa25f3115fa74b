"""
create_tables.py
This file is ran once to create tables for the postgres db

Logging level can be set via the LOG_LEVEL environment variable (e.g., LOG_LEVEL=WARNING).
"""

from sqlalchemy import inspect
import models
from db import engine
from config import get_logger

logger = get_logger(__name__)


def create_tables():
    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()

    for table in models.Base.metadata.sorted_tables:
        if table.name in existing_tables:
            logger.info(f"Table '{table.name}' already exists")
        else:
            logger.info(f"Creating table '{table.name}'...")

    try:
        # Only creates tables that don't exist
        models.Base.metadata.create_all(bind=engine)
        logger.info("Table creation completed successfully!")
    except Exception as e:
        logger.error(f"Error creating tables: {str(e)}")
        raise


if __name__ == "__main__":
    create_tables()
