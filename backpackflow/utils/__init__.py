"""
Utility modules for logging and helper functions.
"""

from .logger import setup_logger, get_logger
from .helpers import sanitize_text, extract_domain, strip_code_fences, truncate_text

__all__ = ["setup_logger", "get_logger", "sanitize_text", "extract_domain", "strip_code_fences", "truncate_text"]
