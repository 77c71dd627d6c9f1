"""Unit tests for custom exceptions."""

import pytest

from lorekeeper.core.exceptions import (
    ConcurrencyConflictError,
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    GenerationConnectionError,
    GenerationError,
    GenerationResponseError,
    GenerationTimeoutError,
    InvalidArgumentError,
    LorekeeperError,
    MigrationError,
    ModelNotFoundError,
    NotFoundError,
    PersistenceError,
)


class TestLorekeeperError:
    """Tests for base LorekeeperError exception."""

    def test_raise_base_error(self):
        """Test raising base error."""
        with pytest.raises(LorekeeperError) as exc_info:
            raise LorekeeperError("Test error")
        assert str(exc_info.value) == "Test error"

    def test_all_inherit_from_base(self):
        """Test that all custom exceptions inherit from LorekeeperError."""
        exceptions = [
            NotFoundError,
            InvalidArgumentError,
            ConcurrencyConflictError,
            PersistenceError,
            GenerationError,
            ConfigurationError,
        ]
        for exc_class in exceptions:
            assert issubclass(exc_class, LorekeeperError)


class TestLookupExceptions:
    """Tests for lookup and validation exceptions."""

    def test_not_found_defaults_to_memory(self):
        error = NotFoundError("mem_123")
        assert error.resource_id == "mem_123"
        assert error.resource_type == "memory"
        assert str(error) == "Memory not found: mem_123"

    def test_not_found_with_resource_type(self):
        error = NotFoundError("char_1", "character")
        assert str(error) == "Character not found: char_1"

    def test_concurrency_conflict_names_key(self):
        error = ConcurrencyConflictError("character", "c1")
        assert error.entity_type == "character"
        assert error.entity_id == "c1"
        assert "character:c1" in str(error)


class TestPersistenceExceptions:
    """Tests for storage exceptions."""

    def test_database_hierarchy(self):
        assert issubclass(DatabaseError, PersistenceError)
        assert issubclass(DatabaseConnectionError, DatabaseError)
        assert issubclass(MigrationError, DatabaseError)

    def test_catch_as_persistence_error(self):
        with pytest.raises(PersistenceError):
            raise MigrationError("bad migration")


class TestGenerationExceptions:
    """Tests for generation provider exceptions."""

    def test_generation_hierarchy(self):
        for exc_class in [
            GenerationConnectionError,
            GenerationTimeoutError,
            GenerationResponseError,
            ModelNotFoundError,
        ]:
            assert issubclass(exc_class, GenerationError)

    def test_model_not_found(self):
        error = ModelNotFoundError("llama3:8b")
        assert error.model_name == "llama3:8b"
        assert "llama3:8b" in str(error)
