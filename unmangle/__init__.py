"""Unmangle - LLM-assisted renaming of obfuscated JavaScript identifiers."""

__version__ = "0.1.0"
__author__ = "unmangle"

from unmangle.config import Config
from unmangle.core.chunker import divide_into_chunks
from unmangle.core.generator import apply_renames
from unmangle.core.merger import merge
from unmangle.core.parser import parse_javascript
from unmangle.core.pipeline import RenamePipeline

__all__ = [
    "__version__",
    "Config",
    "divide_into_chunks",
    "merge",
    "apply_renames",
    "parse_javascript",
    "RenamePipeline",
]
