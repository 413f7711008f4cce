"""JSON persistence of mapping templates in their camelCase stored form."""

from __future__ import annotations

import json
from pathlib import Path

from bulletin_pipeline.mapping.template import MappingTemplate, template_from_dict, template_to_dict


def load_template(path: Path) -> MappingTemplate:
    """Load a template from a JSON file.

    The template name defaults to the file stem when the file holds none.

    Raises:
        ValueError: If the file is not a JSON object or holds invalid indexes.
    """

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Template file {path} must hold a JSON object")
    return template_from_dict(payload, name=path.stem)


def save_template(template: MappingTemplate, path: Path) -> None:
    """Write ``template`` to ``path`` as indented UTF-8 JSON."""

    path.write_text(
        json.dumps(template_to_dict(template), ensure_ascii=False, indent=2) + "\n",
        encoding="utf-8",
    )
