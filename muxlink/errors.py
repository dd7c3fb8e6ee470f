"""Failure taxonomy for remote bootstrap and transport operations.

Every error is caught at the orchestrator flow boundary and turned into an
``Error`` status; none of these are meant to escape to the event loop.
"""

from __future__ import annotations


class MuxLinkError(Exception):
    kind = "error"


class NotInstalled(MuxLinkError):
    kind = "not_installed"


class StartupFailed(MuxLinkError):
    kind = "startup_failed"

    def __init__(self, message: str, log_excerpt: str = "") -> None:
        super().__init__(message)
        self.log_excerpt = log_excerpt


class VersionTooOld(MuxLinkError):
    """Reserved; the version gate is advisory and only logs."""

    kind = "version_too_old"


class AuthFailed(MuxLinkError):
    kind = "auth_failed"


class NetworkUnreachable(MuxLinkError):
    kind = "network_unreachable"


class CommandTimeout(MuxLinkError):
    kind = "timeout"


class NotConnected(MuxLinkError):
    kind = "not_connected"
