"""
POML output artifacts.
"""

from pathlib import Path
from typing import Union

POML_EXTENSION = ".poml"
DEFAULT_ARTIFACT_NAME = "prompt.poml"


def write_poml(document: str, path: Union[str, Path] = DEFAULT_ARTIFACT_NAME) -> Path:
    """Write a generated document to disk as UTF-8 text.

    The .poml extension is appended when the path lacks it.

    Args:
        document: Generated POML document
        path: Destination file path

    Returns:
        Path that was written

    Raises:
        ValueError: If document is empty
    """
    if not document:
        raise ValueError("document is required and cannot be empty")

    target = Path(path)
    if target.suffix != POML_EXTENSION:
        target = target.with_name(target.name + POML_EXTENSION)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(document, encoding="utf-8")
    return target
