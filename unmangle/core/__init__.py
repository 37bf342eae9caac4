"""Core renaming functionality."""

from unmangle.core.chunker import ChunkLimits, divide_into_chunks, tiktoken_counter
from unmangle.core.dispatcher import Dispatcher
from unmangle.core.generator import apply_renames, save_output
from unmangle.core.merger import merge
from unmangle.core.parser import SyntaxTree, parse_javascript
from unmangle.core.pipeline import RenamePipeline

__all__ = [
    "ChunkLimits",
    "divide_into_chunks",
    "tiktoken_counter",
    "Dispatcher",
    "apply_renames",
    "save_output",
    "merge",
    "SyntaxTree",
    "parse_javascript",
    "RenamePipeline",
]
