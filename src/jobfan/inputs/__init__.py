"""
Input module - sources and tokenizer.
"""

from .sources import (
    read_records,
    parse_range,
    numeric_range,
    iter_file_paths,
    argument_product,
)
from .tokenizer import (
    Record,
    ArgumentGroup,
    RejectedGroup,
    Tokenizer,
)

__all__ = [
    # sources
    "read_records",
    "parse_range",
    "numeric_range",
    "iter_file_paths",
    "argument_product",
    # tokenizer
    "Record",
    "ArgumentGroup",
    "RejectedGroup",
    "Tokenizer",
]
