"""Loading of the JSON catalogues bundled with the package."""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog

logger = structlog.get_logger(__name__)


def load_records(
    path: Optional[Union[str, Path]], package: str, resource: str
) -> List[Dict[str, Any]]:
    """
    Load a list of JSON objects.

    Args:
        path: Explicit file, overrides the bundled resource
        package: Package holding the bundled file
        resource: Resource path inside the package

    Raises:
        ValueError: File is not a JSON list of objects
    """
    if path is not None:
        text = Path(path).read_text(encoding="utf-8")
        source = str(path)
    else:
        text = resources.files(package).joinpath(resource).read_text(encoding="utf-8")
        source = f"{package}/{resource}"

    data = json.loads(text)
    if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
        raise ValueError(f"Dataset {source} must be a JSON list of objects")

    logger.info("Dataset loaded", source=source, records=len(data))
    return data
