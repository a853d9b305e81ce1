class RetryableTaskError(Exception):
    """Task failed but may succeed if re-submitted (transient failure)."""

class TerminalTaskError(Exception):
    """Task failed and should not be re-submitted (bad input, invariant broken)."""


class TransportError(RetryableTaskError):
    """A lookup, create, update, segmentation or inference call failed in transit."""

class InputValidationError(TerminalTaskError):
    """Malformed region or image (zero dimensions, bad channel layout)."""

class MissingCredentialError(TerminalTaskError):
    """No bearer token available for collaborator calls."""

class InferenceError(TerminalTaskError):
    """The model could not be loaded or executed."""

class ModelNotFoundError(InferenceError):
    """The model artifact does not exist at the configured path."""

class InferenceShapeError(InferenceError):
    """Tensor rank or shape does not match the model contract."""

class EmptyResultError(TerminalTaskError):
    """Segmentation yielded no lines or inference yielded no decodable text."""
