"""
Error taxonomy for the deploy service.

Each error carries the HTTP status it maps to when it reaches an API
surface. BuildError and UploadError never reach one: they end a worker run.
"""


class DeployError(Exception):
    """Base class for all deploy service errors."""
    status_code = 500


class ValidationError(DeployError):
    """Bad submit payload; nothing is allocated."""
    status_code = 400


class ConfigError(DeployError):
    """Backend or worker configuration is unusable."""
    status_code = 500


class LaunchError(DeployError):
    """The isolation backend rejected or failed the launch call."""
    status_code = 500


class BuildError(DeployError):
    """Clone, install or build step failed inside the worker."""
    pass


class UploadError(DeployError):
    """An artifact write was rejected by the object store."""
    pass


class ProxyUpstreamError(DeployError):
    """The artifact store could not be reached by the proxy."""
    status_code = 500
