"""Exception hierarchy for bgone."""


class BgoneError(Exception):
    """Base class for every error raised by bgone."""


class ConfigurationError(BgoneError, ValueError):
    """Invalid run configuration, detected before any pixel is processed."""


class ColorParseError(ConfigurationError):
    """A color literal could not be parsed."""


class ImageIOError(BgoneError, OSError):
    """An image could not be read or written."""
