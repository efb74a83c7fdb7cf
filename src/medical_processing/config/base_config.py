# ============================================================================
# src/medical_processing/config/base_config.py
# ============================================================================
"""
Base Configuration
- Project root
- Record store database
- Local object storage root
- Knowledge base directory
"""

from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings


class BaseSettingsConfig(BaseSettings):
    PROJECT_ROOT: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent.parent.parent,
        description="Root directory of the project"
    )

    RECORD_DB_PATH: Path = Field(
        default=Path("data/records.db"),
        description="SQLite database holding processing jobs and structured records"
    )

    STORAGE_ROOT: Path = Field(
        default=Path("data/medical-documents"),
        description="Root directory for the local object store"
    )

    KNOWLEDGE_DIR: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent / "knowledge",
        description="Terminology vocabularies (SNOMED, LOINC, RxNorm, ICD-10, CPT)"
    )

    def create_directories(self):
        """Create all necessary directories if they don't exist"""
        for directory in (self.RECORD_DB_PATH.parent, self.STORAGE_ROOT):
            directory.mkdir(parents=True, exist_ok=True)


base_settings = BaseSettingsConfig()
