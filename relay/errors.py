"""Exceptions raised by the hub and the log adapter."""


class RelayError(Exception):
    pass


class SourceUnavailable(RelayError):
    """The external log process could not be started or exited with an error."""

    def __init__(self, command: list[str], diagnostic: str):
        self.command = command
        self.diagnostic = diagnostic.strip()
        super().__init__(f"{command[0] if command else 'source'} error: {self.diagnostic}")


class StreamInterrupted(RelayError):
    """The follow process went away while its output was being streamed."""

    def __init__(self, returncode: int | None, diagnostic: str = ""):
        self.returncode = returncode
        self.diagnostic = diagnostic.strip()
        detail = f": {self.diagnostic}" if self.diagnostic else ""
        super().__init__(f"log stream exited with status {returncode}{detail}")


class HubStopped(RelayError):
    pass


class SubscriptionClosed(RelayError):
    pass


class OperationCancelled(Exception):
    """A fetch was cancelled by its caller. Not a failure."""
