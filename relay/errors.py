"""
Tableau Relay - Error Types
=============================
Exceptions raised by the relay core and translated to HTTP responses by
the gateway routes.

Hierarchy:
    RelayError
      +-- MissingCredential   (401) no bearer token / site id supplied
      +-- InvalidFilter       (400) filter value the platform cannot express
      +-- RemoteUnavailable   (502) transport failure, non-2xx, deadline
      |     +-- UpstreamShapeError   response lacks an expected field
      +-- CycleDetected       (502) project hierarchy loops back on itself
      +-- DepthExceeded       (502) project hierarchy deeper than allowed

Per-item operations (child listing, preview fetch) catch RemoteUnavailable
and degrade to an empty/null slot. Root operations let it propagate.
"""


class RelayError(Exception):
    """Base class for every error the relay reports to its caller."""

    kind = "relay_error"
    status_code = 500

    def to_dict(self) -> dict:
        """Serialize for an HTTPException detail payload."""
        return {"error": self.kind, "message": str(self)}


class MissingCredential(RelayError):
    """The caller did not supply a bearer token or site id."""

    kind = "missing_credential"
    status_code = 401


class InvalidFilter(RelayError):
    """The root filter contains a character that would split the platform filter."""

    kind = "invalid_filter"
    status_code = 400


class RemoteUnavailable(RelayError):
    """
    The analytics platform could not be reached or answered with an error.

    Attributes:
        upstream_status: HTTP status returned by the platform, or None when
                         the failure happened at the transport level.
    """

    kind = "remote_unavailable"
    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None):
        super().__init__(message)
        self.upstream_status = upstream_status

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.upstream_status is not None:
            data["upstream_status"] = self.upstream_status
        return data


class UpstreamShapeError(RemoteUnavailable):
    """The platform answered, but the body is missing an expected field."""

    kind = "upstream_shape"


class CycleDetected(RelayError):
    """A project lists one of its own ancestors as a child."""

    kind = "cycle_detected"
    status_code = 502

    def __init__(self, node_id: str):
        super().__init__(f"Project '{node_id}' appears among its own ancestors")
        self.node_id = node_id


class DepthExceeded(RelayError):
    """The project hierarchy is nested deeper than the configured limit."""

    kind = "depth_exceeded"
    status_code = 502

    def __init__(self, max_depth: int):
        super().__init__(f"Project hierarchy exceeds maximum depth of {max_depth}")
        self.max_depth = max_depth
