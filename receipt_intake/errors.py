"""Exception types raised inside pipeline stages.

None of these ever reach a pipeline caller: each stage catches its own
errors and degrades to an empty value.
"""


class ReceiptIntakeError(Exception):
    """Base class for receipt intake errors."""


class CompressionError(ReceiptIntakeError):
    """A compression tier could not produce an encoded image."""


class RecognitionError(ReceiptIntakeError):
    """The recognition worker failed, crashed, or did not answer in time."""
