from .logger import setup_logging
from .hashing import stable_json_hash

__all__ = ["setup_logging", "stable_json_hash"]
