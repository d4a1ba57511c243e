from importlib import resources
from typing import List
from loguru import logger
import sqlparse

class SQLManager:
    """Reads the SQL scripts shipped in relaytools.sql"""

    PACKAGE = 'relaytools.sql'

    def load_script(self, category: str, name: str) -> str:
        """Text of relaytools/sql/{category}/{name}.sql"""
        script = resources.files(f"{self.PACKAGE}.{category}").joinpath(f"{name}.sql")
        try:
            return script.read_text()
        except FileNotFoundError:
            logger.error(f"SQLManager.load_script: No script {name}.sql in {self.PACKAGE}.{category}")
            raise

    def load_statements(self, category: str, name: str) -> List[str]:
        """Script split into individual statements, skipping empty ones"""
        return [statement for statement in sqlparse.split(self.load_script(category, name)) if statement.strip()]
