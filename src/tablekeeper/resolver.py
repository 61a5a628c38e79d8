"""
Model reference resolution.

Turns a model name (or its configuration) into the query text the refresh
engine materializes.
"""

import logging
from pathlib import Path
from typing import Union

from .config import ModelConfig, TablekeeperConfig
from .exceptions import ConfigurationError
from .schema.statements import strip_query


logger = logging.getLogger(__name__)


class QueryResolver:
    """Resolves model references against a configuration."""

    def __init__(self, config: TablekeeperConfig):
        self.config = config

    @property
    def base_dir(self) -> Path:
        return Path(self.config.project_dir) if self.config.project_dir else Path.cwd()

    def get_model(self, reference: Union[str, ModelConfig]) -> ModelConfig:
        if isinstance(reference, ModelConfig):
            return reference
        return self.config.get_model(reference)

    def resolve(self, reference: Union[str, ModelConfig]) -> str:
        """Return the query text for a model.

        Raises:
            ConfigurationError: the model is unknown, has no SQL, or its
                sql_file cannot be read
        """
        model = self.get_model(reference)

        if model.sql:
            query = model.sql
        elif model.sql_file:
            query = self._read_sql_file(model.name, model.sql_file)
        else:
            raise ConfigurationError(f"No SQL code found for model: {model.name}")

        query = strip_query(query)
        if not query:
            raise ConfigurationError(f"No SQL code found for model: {model.name}")

        return query

    def _read_sql_file(self, model_name: str, sql_file: str) -> str:
        path = Path(sql_file)
        if not path.is_absolute():
            path = self.base_dir / path

        logger.debug(f"Reading SQL for model {model_name} from {path}")
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read SQL file for model '{model_name}': {path}", cause=e
            ) from e

