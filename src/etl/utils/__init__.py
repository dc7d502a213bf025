"""ETL utilities package: logging and the shard document store."""

from src.etl.utils.logger import LIBRARY_LOGGER, set_level, setup_logger
from src.etl.utils.shard_store import ShardStore, read_json, write_json_atomic

__all__ = [
    "LIBRARY_LOGGER",
    "ShardStore",
    "read_json",
    "set_level",
    "setup_logger",
    "write_json_atomic",
]
