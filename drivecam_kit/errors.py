class FormatError(ValueError):
    """The pixel-plane buffer does not match the supported 4:2:0 layout."""


class InferenceError(RuntimeError):
    """A model call failed or returned an output that cannot be decoded."""
