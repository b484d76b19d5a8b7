"""
Module loader - declaration documents to validated ModuleDecl objects

Accepts YAML (or JSON, which is a YAML subset) holding either a single module
mapping or `{modules: [...]}`. Parsing the GuardSymbi surface notation itself
is the parser's job; this loader takes its abstract form.
"""

import logging
import os
from pathlib import Path
from typing import Any, List, Sequence, Union

import yaml
from pydantic import ValidationError

from .errors import DeclarationError
from .models import ModuleDecl

logger = logging.getLogger(__name__)

Source = Union[str, Path]


def load_modules(source: Source) -> List[ModuleDecl]:
    """
    Load modules from a file path or from document text.

    Raises:
        DeclarationError: Unreadable document or invalid declaration tree
    """
    name = "<text>"
    if isinstance(source, Path) or _looks_like_path(source):
        path = Path(source)
        name = str(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise DeclarationError(f"Cannot read module file: {e}", source=name) from e
    else:
        text = source

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DeclarationError(f"Invalid YAML: {e}", source=name) from e

    modules = parse_modules(document, source=name)
    logger.debug(f"Loaded {len(modules)} module(s) from {name}")
    return modules


def load_many(sources: Sequence[Source]) -> List[ModuleDecl]:
    modules: List[ModuleDecl] = []
    for source in sources:
        modules.extend(load_modules(source))
    return modules


def parse_modules(document: Any, source: str = "<data>") -> List[ModuleDecl]:
    """Validate an already-parsed document tree."""
    if isinstance(document, dict) and "modules" in document:
        items = document["modules"]
    elif isinstance(document, list):
        items = document
    elif isinstance(document, dict):
        items = [document]
    else:
        raise DeclarationError("Expected a module mapping or a list of modules", source=source)

    if not isinstance(items, list):
        raise DeclarationError("'modules' must be a list", source=source)

    modules = []
    for index, item in enumerate(items):
        try:
            modules.append(ModuleDecl.model_validate(item))
        except ValidationError as e:
            label = item.get("name") if isinstance(item, dict) else None
            raise DeclarationError(
                f"Module {label or index}: {_summarize(e)}",
                source=source,
            ) from e
    return modules


def _looks_like_path(value: str) -> bool:
    if "\n" in value:
        return False
    return value.endswith((".yaml", ".yml", ".json")) or os.path.isfile(value)


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)
