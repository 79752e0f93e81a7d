"""Tests for configuration models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from modelplane.config.models import (
    DatabaseConfig,
    ExecutorConfig,
    LogOutputConfig,
    ModelPlaneConfig,
)


class TestLogOutputConfig:
    def test_console_destinations_accepted(self) -> None:
        assert LogOutputConfig(destination="stdout").destination == "stdout"

    def test_relative_file_destination_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LogOutputConfig(destination="logs/out.log")

    def test_absolute_file_destination_accepted(self, tmp_path: Path) -> None:
        target = tmp_path / "out.log"
        assert LogOutputConfig(destination=str(target)).destination == str(target)


class TestDatabaseConfig:
    def test_postgres_url_with_schema_accepted(self) -> None:
        config = DatabaseConfig(url="postgresql://app:secret@db:5432/shop?schema=public")
        assert config.url.endswith("schema=public")

    def test_garbage_url_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseConfig(url="not a url")

    def test_negative_busy_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseConfig(busy_timeout_ms=-1)


class TestExecutorConfig:
    def test_defaults(self) -> None:
        config = ExecutorConfig()
        assert config.create_many_mode == "transactional"
        assert config.batch_size == 500
        assert config.max_take == 10_000

    def test_unknown_mode_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ExecutorConfig(create_many_mode="sometimes")  # type: ignore[arg-type]

    @pytest.mark.parametrize("field", ["batch_size", "max_take"])
    def test_non_positive_sizes_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError):
            ExecutorConfig(**{field: 0})


class TestModelPlaneConfig:
    def test_sections_default_independently(self) -> None:
        config = ModelPlaneConfig(executor=ExecutorConfig(batch_size=10))
        assert config.executor.batch_size == 10
        assert config.migrations.accept_data_loss is False
        assert config.logging.level == "INFO"
