"""Fold per-chunk rename suggestions into one deterministic rename map."""

import itertools
import logging
import re
from typing import Iterable

from unmangle.models import RenameMap, RenameSuggestion

logger = logging.getLogger(__name__)

ESCAPE_SUFFIX = "$"

RESERVED_WORDS = frozenset({
    # keywords
    "await", "break", "case", "catch", "class", "const", "continue", "debugger",
    "default", "delete", "do", "else", "enum", "export", "extends", "false",
    "finally", "for", "function", "if", "import", "in", "instanceof", "new",
    "null", "return", "super", "switch", "this", "throw", "true", "try",
    "typeof", "var", "void", "while", "with", "yield",
    # strict mode and contextual
    "arguments", "eval", "implements", "interface", "let", "package", "private",
    "protected", "public", "static",
    # older future-reserved words
    "abstract", "boolean", "byte", "char", "double", "final", "float", "goto",
    "int", "long", "native", "short", "synchronized", "throws", "transient",
    "volatile",
    # not keywords, but renaming to them shadows the global value
    "undefined", "NaN", "Infinity",
})

_IDENTIFIER_RE = re.compile(r"^(?:[^\W\d]|\$)(?:\w|\$)*$")
_INVALID_CHARS_RE = re.compile(r"[^\w$]+")


def is_valid_identifier(name: str) -> bool:
    """Whether name is a syntactically valid JavaScript identifier name."""
    return bool(_IDENTIFIER_RE.match(name))


def is_reserved_word(name: str) -> bool:
    return name in RESERVED_WORDS


def sanitize_identifier(name: str) -> str:
    """Turn an arbitrary suggested name into a valid identifier, or '' if nothing is left."""
    name = name.strip()
    if is_valid_identifier(name):
        return name

    parts = [part for part in _INVALID_CHARS_RE.split(name) if part]
    if not parts:
        return ""
    # "user name" / "user-name" -> "userName"
    candidate = parts[0] + "".join(part[:1].upper() + part[1:] for part in parts[1:])
    if candidate[0].isdigit():
        candidate = "_" + candidate
    return candidate if is_valid_identifier(candidate) else ""


def escape_reserved(name: str, escape_suffix: str = ESCAPE_SUFFIX) -> str:
    return f"{name}{escape_suffix}" if is_reserved_word(name) else name


def merge(
    all_suggestions: Iterable[Iterable[RenameSuggestion]],
    taken_names: Iterable[str] = (),
    escape_suffix: str = ESCAPE_SUFFIX,
) -> RenameMap:
    """Merge suggestion lists (in chunk order) into one rename map.

    For each original name the highest-confidence suggestion wins; ties go
    to the first one seen. No-op suggestions are dropped. Reserved target
    names get ``escape_suffix`` appended. When two originals would end up
    with the same name, or a target matches an identifier that stays in the
    file, later ones get a numeric suffix.

    Args:
        all_suggestions: One suggestion list per chunk, in chunk order
        taken_names: Identifier names already present in the source
        escape_suffix: Marker appended to reserved-word targets

    Returns:
        Mapping from original name to final name, in first-seen order
    """
    best: dict[str, RenameSuggestion] = {}
    for suggestion in itertools.chain.from_iterable(all_suggestions):
        original = suggestion.original_name
        if suggestion.suggested_name == original:
            continue
        if not is_valid_identifier(original) or is_reserved_word(original):
            logger.debug("Skipping suggestion for non-renameable name %r", original)
            continue

        current = best.get(original)
        if current is None or suggestion.confidence > current.confidence:
            best[original] = suggestion

    targets: dict[str, str] = {}
    for original, suggestion in best.items():
        target = sanitize_identifier(suggestion.suggested_name)
        if not target:
            logger.debug("Dropping unusable target %r for %r", suggestion.suggested_name, original)
            continue
        target = escape_reserved(target, escape_suffix)
        if target != original:
            targets[original] = target

    # Keys are renamed away in the same pass, so only names that stay can clash
    remaining = set(taken_names) - set(targets)
    used: set[str] = set()
    rename_map: RenameMap = {}
    for original, target in targets.items():
        final = target
        counter = 2
        while final in used or final in remaining:
            final = f"{target}{counter}"
            counter += 1

        used.add(final)
        rename_map[original] = final

    return rename_map

