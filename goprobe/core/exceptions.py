from typing import Optional


class ProbeException(Exception):
    """
    Base class for every error a capture can end with.
    """

    pass


class ValidationError(ProbeException):
    """
    A capture request is missing a required field. Raised before any I/O.
    """

    pass


class ClusterNotFound(ProbeException):
    """
    The requested cluster is not registered.
    """

    pass


class TransportError(ProbeException):
    """
    Fetching a raw profile from the target failed.
    """

    def __init__(self, message: str, *, url: str, kind: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.kind = kind
        self.status_code = status_code


class RenderError(ProbeException):
    """
    An external tool failed or its output could not be parsed.
    `stage` is one of "scratch", "decode", "parse", "flame", "callgraph".
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class StorageError(ProbeException):
    """
    An artifact store operation failed.
    """

    pass


class ToolingNotFound(ProbeException):
    """
    A required external tool is missing from PATH. Checked once at startup.
    """

    pass
