"""Shared fixtures for the tidywatch test-suite."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from tidywatch.config.models import OrganizationOptions, TidyConfig
from tidywatch.ingestion import AttributeExtractor, TypeDetector
from tidywatch.state import StateRepository


@pytest.fixture
def repository(tmp_path: Path) -> Iterator[StateRepository]:
    """Return an initialized store with the default tags and rules."""
    repo = StateRepository(tmp_path / "state" / "tidywatch.db")
    repo.initialize()
    yield repo
    repo.close()


@pytest.fixture
def bare_repository(tmp_path: Path) -> Iterator[StateRepository]:
    """Return an initialized store without seeded tags or rules."""
    repo = StateRepository(tmp_path / "state" / "bare.db", seed_defaults=False)
    repo.initialize()
    yield repo
    repo.close()


@pytest.fixture
def extractor() -> AttributeExtractor:
    options = OrganizationOptions()
    return AttributeExtractor(TypeDetector(options.categories, options.default_category))


@pytest.fixture
def config(tmp_path: Path) -> TidyConfig:
    """Return a configuration rooted entirely inside ``tmp_path``."""
    return TidyConfig.model_validate(
        {
            "store": {"path": str(tmp_path / "state" / "engine.db")},
            "watch": {"debounce_seconds": 0.1, "health_check_seconds": 0.2},
            "logging": {"path": str(tmp_path / "logs" / "tidywatch.log")},
        }
    )
