class CargomonError(Exception):
    """Base exception for cargomon errors."""
    pass

class ConfigError(CargomonError):
    """Exception raised when the configuration is missing, unreadable or invalid."""
    pass

class WatchError(CargomonError):
    """Exception raised when the file watching backend fails. Always fatal."""
    pass

class SpawnError(CargomonError):
    """Exception raised when a build or run command cannot be started."""

    def __init__(self, command, cause=None):
        self.command = list(command)
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Could not start '{' '.join(self.command)}'{detail}")

class SupervisorError(CargomonError):
    """Exception raised when a child process cannot be confirmed dead."""
    pass
