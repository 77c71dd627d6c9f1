"""Custom exceptions for Lorekeeper.

This module defines the exception hierarchy used throughout the engine
to handle various error conditions with appropriate context.
"""


class LorekeeperError(Exception):
    """Base exception for all Lorekeeper errors.

    All custom exceptions in the engine should inherit from this class.
    """

    pass


# Lookup and validation
class NotFoundError(LorekeeperError):
    """Raised when a requested memory, entity or template does not exist.

    Attributes:
        resource_id: The ID (or key) of the resource that was not found.
        resource_type: The kind of resource (memory, character, template, ...).
    """

    def __init__(self, resource_id: str, resource_type: str = "memory"):
        self.resource_id = resource_id
        self.resource_type = resource_type
        super().__init__(f"{resource_type.capitalize()} not found: {resource_id}")


class InvalidArgumentError(LorekeeperError):
    """Raised for a bad entity type, memory kind, filter or template kind."""

    pass


class ConcurrencyConflictError(LorekeeperError):
    """Raised when a write loses the race to become the current version.

    Re-issuing the create is safe: it simply advances to the next version.

    Attributes:
        entity_type: Entity type of the contested key.
        entity_id: Entity ID of the contested key.
    """

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent write conflict for {entity_type}:{entity_id}, retry once"
        )


# Persistence
class PersistenceError(LorekeeperError):
    """Base exception for storage-related errors."""

    pass


class DatabaseError(PersistenceError):
    """Raised when a database operation fails."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when unable to connect to the database."""

    pass


class MigrationError(DatabaseError):
    """Raised when a database migration fails."""

    pass


# Generation provider
class GenerationError(LorekeeperError):
    """Base exception for text generation failures."""

    pass


class GenerationConnectionError(GenerationError):
    """Raised when unable to reach the generation service."""

    pass


class GenerationTimeoutError(GenerationError):
    """Raised when a generation request times out."""

    pass


class GenerationResponseError(GenerationError):
    """Raised when the provider returns an invalid or unexpected response."""

    pass


class ModelNotFoundError(GenerationError):
    """Raised when a requested model is not available."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Model not found: {model_name}")


class ConfigurationError(LorekeeperError):
    """Raised when there is a configuration error."""

    pass
