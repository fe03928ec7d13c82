"""
Utility Functions Module

Provides essential utilities:
- File I/O (CSV, JSON, Parquet, Pickle) for sources and datasets
- Dataset persistence and loading keyed by family and sub-table
- Logging configuration
- Path management
"""

import sys
import json
import shutil
import tempfile
import logging
from pathlib import Path
from typing import Dict, List, Optional, Any, Union
import pandas as pd
from logging.handlers import RotatingFileHandler

from .exceptions import PersistenceFailure, SourceReadFailure

logger = logging.getLogger(__name__)


# File I/O handlers
class FileHandler:
    """
    Handles file input/output operations

    Supports: CSV, JSON, Parquet, Pickle
    """

    EXTENSIONS = {'csv': '.csv', 'json': '.json', 'parquet': '.parquet', 'pkl': '.pkl'}

    @staticmethod
    def read_file(filepath: Union[str, Path], **kwargs) -> pd.DataFrame:
        """
        Read file based on extension

        Args:
            filepath: Path to file
            **kwargs: Additional arguments for pandas readers

        Returns:
            DataFrame
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        extension = filepath.suffix.lower()

        try:
            if extension == '.csv':
                return pd.read_csv(filepath, **kwargs)
            elif extension == '.json':
                return pd.read_json(filepath, orient='records', **kwargs)
            elif extension == '.parquet':
                return pd.read_parquet(filepath, **kwargs)
            elif extension in ['.pkl', '.pickle']:
                return pd.read_pickle(filepath, **kwargs)
            else:
                raise ValueError(f"Unsupported file format: {extension}")

        except Exception as e:
            logger.error(f"Failed to read {filepath}: {e}")
            raise

    @staticmethod
    def write_file(
        data: pd.DataFrame,
        filepath: Union[str, Path],
        **kwargs
    ):
        """
        Write file based on extension

        Args:
            data: DataFrame to write
            filepath: Output path
            **kwargs: Additional arguments for pandas writers
        """
        filepath = Path(filepath)

        filepath.parent.mkdir(parents=True, exist_ok=True)

        extension = filepath.suffix.lower()

        try:
            if extension == '.csv':
                data.to_csv(filepath, index=False, **kwargs)
            elif extension == '.json':
                data.to_json(filepath, orient='records', date_format='iso', indent=2, **kwargs)
            elif extension == '.parquet':
                data.to_parquet(filepath, index=False, **kwargs)
            elif extension == '.pkl':
                data.to_pickle(filepath, **kwargs)
            else:
                raise ValueError(f"Unsupported file format: {extension}")

            logger.debug(f"File written successfully: {filepath}")

        except Exception as e:
            logger.error(f"Failed to write {filepath}: {e}")
            raise

    @staticmethod
    def write_json(payload: Dict[str, Any], filepath: Union[str, Path]):
        """Write a JSON document with stable key order"""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(payload, f, indent=2, default=str)


class SourceReader:
    """
    Reads real source tables for model-based synthesis

    A source location is either a single file (one base sub-table) or a
    directory holding `<family>.<sub_table>.<ext>` or `<sub_table>.<ext>` files.
    """

    @staticmethod
    def apply_field_mapping(data: pd.DataFrame, mapping: Optional[Dict[str, str]]) -> pd.DataFrame:
        """
        Rename source columns to schema names

        Args:
            data: Source DataFrame
            mapping: {schema_name: source_name}

        Returns:
            DataFrame with renamed columns
        """
        if not mapping:
            return data
        rename_map = {source: target for target, source in mapping.items() if source in data.columns}
        return data.rename(columns=rename_map)

    @staticmethod
    def locate(location: Union[str, Path], family: str, sub_table: str, single: bool) -> Path:
        location = Path(location)
        if location.is_file():
            if not single:
                raise FileNotFoundError(
                    f"{location} is a single file but {family} has several base sub-tables; "
                    f"point the source at a directory"
                )
            return location
        if location.is_dir():
            for stem in (f"{family}.{sub_table}", sub_table):
                for ext in ('.csv', '.parquet', '.json', '.pkl'):
                    candidate = location / f"{stem}{ext}"
                    if candidate.exists():
                        return candidate
            raise FileNotFoundError(f"No source file for {family}.{sub_table} in {location}")
        raise FileNotFoundError(f"Source not found: {location}")

    @classmethod
    def read_sources(
        cls,
        location: Union[str, Path],
        family: str,
        sub_tables: List[str],
        mapping: Optional[Dict[str, str]] = None,
    ) -> Dict[str, pd.DataFrame]:
        """
        Read every base sub-table of a family from its source location

        Raises:
            SourceReadFailure: if a file is missing or unreadable
        """
        tables = {}
        for sub_table in sub_tables:
            path = None
            try:
                path = cls.locate(location, family, sub_table, single=len(sub_tables) == 1)
                data = FileHandler.read_file(path)
            except Exception as e:
                raise SourceReadFailure(path or location, e) from e
            tables[sub_table] = cls.apply_field_mapping(data, mapping)
            logger.info(f"Read source {family}.{sub_table}: {len(data)} rows, {len(data.columns)} columns")
        return tables


class DatasetStore:
    """
    Persists and loads dataset instances

    Layout: <root>/<family>/data/<family>.<sub_table>.<ext> plus
    <family>.manifest.json. A family is written to a staging directory
    and moved into place only when every file succeeded.
    """

    def __init__(self, root: Union[str, Path], file_format: str = "csv"):
        self.root = Path(root)
        self.file_format = file_format
        self.extension = FileHandler.EXTENSIONS[file_format]

    def family_dir(self, family: str) -> Path:
        return self.root / family / "data"

    def table_path(self, family: str, sub_table: str, base: Optional[Path] = None) -> Path:
        base = base or self.family_dir(family)
        return base / f"{family}.{sub_table}{self.extension}"

    def manifest_path(self, family: str, base: Optional[Path] = None) -> Path:
        base = base or self.family_dir(family)
        return base / f"{family}.manifest.json"

    def save(self, family: str, tables: Dict[str, pd.DataFrame], manifest: Dict[str, Any]) -> List[Path]:
        """
        Write all sub-tables and the manifest of one family

        Returns:
            Final paths of the written files

        Raises:
            PersistenceFailure: on any I/O error; nothing is left behind
        """
        target = self.family_dir(family)
        staging = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=f".{family}-", dir=self.root))
            for name, data in tables.items():
                FileHandler.write_file(data, self.table_path(family, name, staging))
            FileHandler.write_json(manifest, self.manifest_path(family, staging))

            if target.exists():
                shutil.rmtree(target)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(staging), str(target))
            staging = None
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(target, e) from e
        finally:
            if staging is not None and staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        written = [self.table_path(family, name) for name in tables] + [self.manifest_path(family)]
        logger.info(f"Saved {family} ({len(tables)} sub-tables) to {target}")
        return written

    def exists(self, family: str) -> bool:
        return self.manifest_path(family).exists()

    def load(self, family: str) -> Dict[str, pd.DataFrame]:
        """
        Load the persisted sub-tables of a family

        Date and datetime fields are parsed back according to the schema.
        """
        from .schema import get_family, FieldType

        schema = get_family(family)
        tables = {}
        for name, table_schema in schema.sub_tables.items():
            path = self.table_path(family, name)
            if not path.exists():
                continue
            data = FileHandler.read_file(path)
            for spec in table_schema.fields_of_type(FieldType.DATE, FieldType.DATETIME):
                if spec.name in data.columns:
                    data[spec.name] = pd.to_datetime(data[spec.name])
            tables[name] = data
        return tables

    def read_manifest(self, family: str) -> Dict[str, Any]:
        with open(self.manifest_path(family)) as f:
            return json.load(f)


class LoggerConfig:
    """
    Logging configuration manager

    Sets up consistent logging across the application
    """

    @staticmethod
    def setup_logger(
        name: str = "labsynth",
        level: int = logging.INFO,
        log_file: Optional[Union[str, Path]] = None,
        log_to_console: bool = True,
        log_format: Optional[str] = None
    ) -> logging.Logger:
        """
        Setup and configure logger

        Args:
            name: Logger name
            level: Logging level
            log_file: Optional file path for file logging
            log_to_console: Whether to log to console
            log_format: Custom log format

        Returns:
            Configured logger
        """
        logger = logging.getLogger(name)
        logger.setLevel(level)

        logger.handlers.clear()

        if log_format is None:
            log_format = (
                '%(asctime)s - %(name)s - %(levelname)s - '
                '%(filename)s:%(lineno)d - %(message)s'
            )

        formatter = logging.Formatter(log_format)

        if log_to_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(level)
            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)

        if log_file:
            log_file = Path(log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,  # 10 MB
                backupCount=5
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        return logger


class PathManager:
    """Path helpers"""

    @staticmethod
    def get_project_root() -> Path:
        return Path(__file__).parent.parent

    @staticmethod
    def get_presets_dir() -> Path:
        return PathManager.get_project_root() / "data" / "presets"


# Convenience functions
def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None
):
    """
    Quick logging setup

    Args:
        level: Logging level
        log_file: Optional log file path
    """
    LoggerConfig.setup_logger(level=level, log_file=log_file)

