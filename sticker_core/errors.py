"""Exception types raised by the sticker_core data layer."""

from __future__ import annotations


class StickerCoreError(Exception):
    """Base class for every error raised on purpose by sticker_core."""


class ValidationError(StickerCoreError, ValueError):
    """An argument failed basic validation (code format, lengths, weights)."""


class NotFoundError(StickerCoreError, LookupError):
    """A referenced user, wallet, event, product or purchase does not exist."""


class InsufficientAssetsError(StickerCoreError, ValueError):
    """A wallet would end up with negative assets."""


class InsufficientQuantityError(StickerCoreError, ValueError):
    """A product does not have enough stock for the requested purchase."""


class InvalidStateError(StickerCoreError, ValueError):
    """The entity is in a state that does not allow the operation."""


class DatabaseNotInitializedError(StickerCoreError, RuntimeError):
    """The database handle was used before initialize() succeeded."""


class MigrationError(StickerCoreError, RuntimeError):
    """A schema migration step failed; nothing from the run was persisted."""
