from sqlalchemy import text
from typing import Dict
from datetime import datetime
from zoneinfo import ZoneInfo
import logging
import os


logger = logging.getLogger(__name__)

class FrontendIDGenerator:
    """
    Service for generating human-readable frontend IDs for engine records.

    Format: PREFIX-00001-25 (where 25 is the year), or PREFIX-00001 for
    patterns flagged ``no_year_suffix``. Year-suffixed counters restart at
    00001 every January 1st.
    """

    ID_PATTERNS: Dict[str, Dict[str, str]] = {
        "production_order_master": {
            "prefix": "PRO",
            "column_name": "frontend_id",
            "description": "Production Order Master IDs (PRO-00001-25, PRO-00002-25, etc.)"
        },
        "stage_instance": {
            "prefix": "STG",
            "column_name": "frontend_id",
            "description": "Stage Instance IDs (STG-00001, STG-00002, etc.)",
            "no_year_suffix": True
        },
    }

    @classmethod
    def current_year_suffix(cls) -> str:
        tz_name = os.getenv("FRONTEND_ID_TIMEZONE", "Asia/Kolkata")
        return datetime.now(ZoneInfo(tz_name)).strftime("%y")

    @classmethod
    def generate_frontend_id(cls, table_name: str, db) -> str:
        """
        Generate the next frontend ID for a table.

        Args:
            table_name: The database table name
            db: Session or Connection to run the lookup on

        Returns:
            Generated frontend ID string (e.g., "PRO-00001-25" or "STG-00001")

        Raises:
            ValueError: If table_name is not supported
        """
        if table_name not in cls.ID_PATTERNS:
            raise ValueError(f"Unsupported table name: {table_name}. Supported tables: {list(cls.ID_PATTERNS.keys())}")

        config = cls.ID_PATTERNS[table_name]
        prefix = config["prefix"]
        column_name = config["column_name"]
        no_year_suffix = config.get("no_year_suffix", False)

        if no_year_suffix:
            pattern = f"{prefix}-%"
            year_suffix = None
        else:
            year_suffix = cls.current_year_suffix()
            pattern = f"{prefix}-%-{year_suffix}"

        query = text(f"""
            SELECT {column_name}
            FROM {table_name}
            WHERE {column_name} LIKE :pattern
        """)

        try:
            result = db.execute(query, {"pattern": pattern}).fetchall()
        except Exception as e:
            logger.error(f"Error generating frontend ID for {table_name}: {e}")
            raise

        # Extract counter values and find max
        max_counter = 0
        for row in result:
            id_value = row[0]
            if not id_value:
                continue
            parts = id_value.split("-")
            try:
                # PREFIX-00123 or PREFIX-00123-25
                counter = int(parts[1])
            except (ValueError, IndexError):
                continue
            max_counter = max(max_counter, counter)

        next_counter = max_counter + 1
        if year_suffix is None:
            generated_id = f"{prefix}-{next_counter:05d}"
        else:
            generated_id = f"{prefix}-{next_counter:05d}-{year_suffix}"

        logger.debug(f"Generated ID for {table_name}: {generated_id} (counter: {next_counter})")
        return generated_id
