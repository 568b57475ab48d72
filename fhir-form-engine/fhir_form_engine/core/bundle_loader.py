from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from jsonschema import Draft202012Validator

from .exceptions import BundleLoadError

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "bundle.schema.json"


@dataclass
class LoadedBundles:
    schema_bundle: Dict[str, Any]
    terminology_bundles: List[Dict[str, Any]] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)


class BundleLoader:
    """Reads schema and terminology bundles from disk and checks their shape."""

    def __init__(self, schema_path: Path = SCHEMA_PATH) -> None:
        self._schema_path = schema_path
        self._validator: Optional[Draft202012Validator] = None

    def _get_validator(self) -> Draft202012Validator:
        if self._validator is None:
            with self._schema_path.open("r", encoding="utf-8") as f:
                self._validator = Draft202012Validator(json.load(f))
        return self._validator

    def validate(self, data: Any, source: str) -> None:
        errors = sorted(self._get_validator().iter_errors(data), key=lambda e: str(list(e.path)))
        if errors:
            msgs = [f"{list(e.path)}: {e.message}" for e in errors]
            raise BundleLoadError(f"Bundle validation failed for {source}: {'; '.join(msgs)}")

    def load_bundle(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise BundleLoadError(f"Bundle file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                if path.suffix.lower() in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise BundleLoadError(f"Bundle file {path} is not valid: {e}") from e
        self.validate(data, str(path))
        return data

    def load(self, structure_path: Path, terminology_paths: Sequence[Path]) -> LoadedBundles:
        schema_bundle = self.load_bundle(structure_path)
        terminology = [self.load_bundle(p) for p in terminology_paths]
        sources = [str(structure_path), *(str(p) for p in terminology_paths)]
        logger.info(
            "Bundles loaded",
            extra={
                "sources": sources,
                "schema_entries": len(schema_bundle.get("entry", [])),
                "terminology_bundles": len(terminology),
            },
        )
        return LoadedBundles(schema_bundle=schema_bundle, terminology_bundles=terminology, sources=sources)
