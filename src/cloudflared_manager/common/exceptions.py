"""Base exceptions for the cloudflared manager."""


class CloudflaredManagerError(Exception):
    """Base exception for all cloudflared manager errors."""

    pass


class ProcessError(CloudflaredManagerError):
    """Raised when a subprocess cannot be spawned or stopped."""

    pass


class BinaryNotFoundError(CloudflaredManagerError):
    """Raised when the cloudflared binary is missing or not executable."""

    pass
