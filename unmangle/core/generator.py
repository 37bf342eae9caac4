"""Apply a rename map to JavaScript source through its syntax tree."""

import logging
from pathlib import Path
from typing import Mapping

from unmangle.core.merger import is_valid_identifier
from unmangle.core.parser import parse_javascript

logger = logging.getLogger(__name__)


def apply_renames(source_code: str, rename_map: Mapping[str, str]) -> str:
    """Rename every identifier whose name is a key of rename_map.

    Renaming is by name, not by scope: all bindings that share a name in
    different scopes are renamed alike. Property names, string and regex
    contents, labels and comments are never touched.

    Args:
        source_code: Original source code
        rename_map: Mapping from old names to new names

    Returns:
        Renamed source code

    Raises:
        ParseError: If the source cannot be parsed; nothing is rewritten
        ValueError: If a new name is not a valid identifier
    """
    invalid = [new for new in rename_map.values() if not is_valid_identifier(new)]
    if invalid:
        raise ValueError(f"Rename targets are not valid identifiers: {', '.join(map(repr, invalid))}")

    tree = parse_javascript(source_code)
    if not rename_map:
        return source_code

    return tree.serialize(rename_map)


def save_output(
    code: str,
    output_path: Path,
    create_dirs: bool = True,
) -> None:
    """Save code to file.

    Args:
        code: Source code to save
        output_path: Path to save to
        create_dirs: Whether to create parent directories
    """
    if create_dirs:
        output_path.parent.mkdir(parents=True, exist_ok=True)

    output_path.write_text(code, encoding="utf-8")
    logger.info("Saved output to %s", output_path)
