"""Capability Registry for the Secure MCP Server.

Holds every tool, prompt and resource the server exposes. Capabilities are
registered once at startup; the registry is frozen before serving and is
read-only afterwards, so concurrent reads need no locking.
"""

from collections.abc import Iterator
from typing import Any, Optional

from jsonschema import Draft7Validator

from shared.logging import get_logger
from shared.models import Capability, CapabilityDescriptor, CapabilityKind
from shared.schema import collect_errors, compile_schema

logger = get_logger(__name__)


class DuplicateCapabilityError(ValueError):
    """A capability with the same kind and name is already registered."""

    def __init__(self, kind: CapabilityKind, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind.value.capitalize()} '{name}' is already registered")


class RegistryFrozenError(RuntimeError):
    """Registration attempted after startup completed."""
    pass


class InvalidArgumentsError(ValueError):
    """Raised by a handler when arguments pass the schema but cannot be used."""
    pass


class CapabilityListing:
    """
    Lazy, restartable view over the descriptors of one capability kind.

    Every iteration starts a fresh pass over the registry.
    """

    def __init__(self, capabilities: dict[str, Capability]) -> None:
        self._capabilities = capabilities

    def __iter__(self) -> Iterator[CapabilityDescriptor]:
        for capability in self._capabilities.values():
            yield capability.describe()

    def __len__(self) -> int:
        return len(self._capabilities)


class CapabilityRegistry:
    """
    Central registry for all MCP capabilities.

    Responsibilities:
    - Register capabilities, rejecting duplicate (kind, name) pairs
    - Lookup by kind and name
    - Enumerate descriptors for listing requests
    - Validate input payloads against declared schemas
    """

    def __init__(self) -> None:
        self._capabilities: dict[CapabilityKind, dict[str, Capability]] = {
            kind: {} for kind in CapabilityKind
        }
        # (kind, name) -> (input validator, output validator)
        self._validators: dict[tuple[CapabilityKind, str], tuple[Optional[Draft7Validator], ...]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, capability: Capability) -> None:
        """
        Register a capability.

        Args:
            capability: Capability to register

        Raises:
            DuplicateCapabilityError: If the kind and name are already registered
            RegistryFrozenError: If the registry has been frozen
            ValueError: If a declared schema is not valid JSON Schema
        """
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register '{capability.name}': registry is frozen"
            )

        by_name = self._capabilities[capability.kind]
        if capability.name in by_name:
            raise DuplicateCapabilityError(capability.kind, capability.name)

        validators = (compile_schema(capability.input_schema), compile_schema(capability.output_schema))

        by_name[capability.name] = capability
        self._validators[(capability.kind, capability.name)] = validators

        logger.info(
            "Capability registered",
            kind=capability.kind.value,
            capability=capability.name,
        )

    def register_many(self, capabilities: list[Capability]) -> None:
        """Register multiple capabilities at once."""
        for capability in capabilities:
            self.register(capability)

    def freeze(self) -> None:
        """Make the registry read-only."""
        self._frozen = True
        logger.info("Capability registry frozen", counts=self.counts())

    def lookup(self, kind: CapabilityKind, name: str) -> Optional[Capability]:
        """
        Get a capability by kind and name.

        Returns:
            The Capability if found, None otherwise
        """
        return self._capabilities[kind].get(name)

    def _compiled(self, capability: Capability) -> tuple[Optional[Draft7Validator], Optional[Draft7Validator]]:
        compiled = self._validators.get((capability.kind, capability.name))
        if compiled is None:
            compiled = (compile_schema(capability.input_schema), compile_schema(capability.output_schema))
        return compiled

    def validate_input(
        self,
        capability: Capability,
        payload: dict[str, Any]
    ) -> tuple[bool, list[str]]:
        """
        Validate an input payload against a capability's input schema.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors = collect_errors(self._compiled(capability)[0], payload)
        return not errors, errors

    def validate_output(self, capability: Capability, output: Any) -> tuple[bool, list[str]]:
        """Validate a handler's output against its declared output schema."""
        errors = collect_errors(self._compiled(capability)[1], output)
        return not errors, errors

    def counts(self) -> dict[str, int]:
        """Get count of capabilities per kind."""
        return {kind.value: len(by_name) for kind, by_name in self._capabilities.items()}

    # Defined last: inside the class body the name shadows the builtin.
    def list(self, kind: CapabilityKind) -> CapabilityListing:
        """List descriptors (name and schema) of every capability of a kind."""
        return CapabilityListing(self._capabilities[kind])
