"""
Exceptions raised while preparing data for, and training, the classifier
"""


class PolarityError(Exception):
    """
    Base class for every error raised by this package
    """


class CorpusStructureError(PolarityError):
    """
    The corpus directory does not have the expected two-class layout,
    or one of its files could not be read
    """


class EmptyCorpusError(PolarityError):
    """
    The corpus produced no tokens to build a vocabulary from
    """


class InvalidLengthError(PolarityError, ValueError):
    """
    A sequence length that is not a positive integer
    """


class InsufficientDataError(PolarityError, ValueError):
    """
    A split would leave the train or the validation side empty
    """


class InvalidConfigError(PolarityError, ValueError):
    """
    A configuration value outside its accepted range
    """


class DivergenceError(PolarityError):
    """
    Training produced a non-finite loss while running in strict mode
    """

    def __init__(self, epoch: int, message: str = ""):
        self.epoch = epoch
        super().__init__(
            message or f"Loss became non-finite during epoch {epoch}"
        )
