from typing import Any, Dict, Optional


class MdvError(Exception):
    """Base class for failures at the file and network boundaries."""


class ChoicesFormatError(MdvError, ValueError):
    pass


class ConfigError(MdvError, ValueError):
    pass


class DataverseError(MdvError, RuntimeError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
