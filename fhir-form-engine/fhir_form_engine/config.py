from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


CardinalityPolicy = Literal["coerce", "reject"]

SAMPLES_DIR = Path(__file__).parent / "samples"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="")

    SERVICE_NAME: str = "fhir-form-engine"
    LOG_LEVEL: str = "INFO"

    # Schema and terminology sources
    STRUCTURE_DEFINITIONS_PATH: str = str(SAMPLES_DIR / "profiles-resources.json")
    TERMINOLOGY_BUNDLE_PATHS: str = str(SAMPLES_DIR / "valuesets.json")

    # Remote value set lookups
    VALUESET_REMOTE_ENABLED: bool = True
    VALUESET_REMOTE_TIMEOUT: float = 10.0

    # Assembly
    CARDINALITY_POLICY: CardinalityPolicy = "coerce"

    def structure_definitions_path(self) -> Path:
        return Path(self.STRUCTURE_DEFINITIONS_PATH)

    def terminology_paths(self) -> list[Path]:
        paths: list[Path] = []
        for raw in self.TERMINOLOGY_BUNDLE_PATHS.split(","):
            raw = raw.strip()
            if not raw:
                continue
            p = Path(raw)
            if p.is_dir():
                paths.extend(
                    sorted(
                        [
                            *p.glob("*.json"),
                            *p.glob("*.yaml"),
                            *p.glob("*.yml"),
                        ]
                    )
                )
            else:
                paths.append(p)
        return paths


def get_settings() -> Settings:
    return Settings()
