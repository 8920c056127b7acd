"""Error types raised by the audio effect engine."""


class PlaygroundError(Exception):
    """Base class for engine errors."""


class DecodeError(PlaygroundError):
    """Audio bytes could not be parsed, or the format is not supported."""


class GraphBuildError(PlaygroundError):
    """An effect graph was requested without a loaded clip."""


class DeviceError(PlaygroundError):
    """The audio output device is unavailable or could not be resumed."""
