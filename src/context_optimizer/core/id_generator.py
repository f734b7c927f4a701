"""
Centralized ID generation for the context optimizer.

Two kinds of identifiers exist in the system:
- Random hex32 IDs for compression sessions (when the caller supplies none)
- Deterministic hex32 IDs for learned patterns, so that observing the same
  fragment again upserts the existing row instead of inserting a duplicate
"""

import hashlib
import secrets
import uuid
from typing import Literal, Optional


IDFormat = Literal["hex32", "uuid4"]


class IDGenerator:
    """
    Central ID generator.

    Features:
    - Single consistent format (hex32, SQLite friendly)
    - Deterministic derivation from content for upsert keys
    - Format validation
    """

    DEFAULT_FORMAT: IDFormat = "hex32"

    @staticmethod
    def generate(format: Optional[IDFormat] = None) -> str:
        """
        Generate a random ID in the requested format.

        Examples:
            >>> IDGenerator.generate("hex32")
            'a3f4b2c1d5e6f7a8b9c0d1e2f3a4b5c6'

            >>> IDGenerator.generate("uuid4")
            '550e8400-e29b-41d4-a716-446655440000'
        """
        if format is None:
            format = IDGenerator.DEFAULT_FORMAT

        if format == "hex32":
            return secrets.token_hex(16)
        elif format == "uuid4":
            return str(uuid.uuid4())
        else:
            raise ValueError(f"Unsupported ID format: {format}")

    @staticmethod
    def derive(*parts: str) -> str:
        """
        Derive a stable hex32 ID from the given parts.

        The same parts always give the same ID. Each part is length-prefixed
        so ("a", "bc") and ("ab", "c") hash differently.

        Examples:
            >>> IDGenerator.derive("agent", "redundant", "some text") == IDGenerator.derive(
            ...     "agent", "redundant", "some text"
            ... )
            True
        """
        digest = hashlib.sha256()
        for part in parts:
            encoded = part.encode("utf-8")
            digest.update(str(len(encoded)).encode("ascii"))
            digest.update(b"|")
            digest.update(encoded)
        return digest.hexdigest()[:32]

    @staticmethod
    def is_valid_id(id_str: str, format: Optional[IDFormat] = None) -> bool:
        """
        Check whether a string is a valid ID.

        Args:
            id_str: String to validate
            format: Expected format (None to auto-detect)
        """
        if not id_str:
            return False

        try:
            if format == "uuid4" or (format is None and "-" in id_str):
                uuid.UUID(id_str)
                return True
            return len(id_str) == 32 and all(c in "0123456789abcdef" for c in id_str.lower())
        except (ValueError, TypeError):
            return False


def generate_id(format: Optional[IDFormat] = None) -> str:
    """Alias for IDGenerator.generate()."""
    return IDGenerator.generate(format)


def derive_id(*parts: str) -> str:
    """Alias for IDGenerator.derive()."""
    return IDGenerator.derive(*parts)


def is_valid_id(id_str: str) -> bool:
    """Alias for IDGenerator.is_valid_id()."""
    return IDGenerator.is_valid_id(id_str)
