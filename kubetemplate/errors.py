"""Exception hierarchy for kubetemplate.

KubeTemplateError
├── NamespaceNotMonitoredError   -- render touched a namespace never learned
├── NamespaceResolutionError     -- empty namespace and no POD_NAMESPACE
├── UnrecognizedNetworkKindError -- bad Network() argument
├── WatchFailureError            -- a watch loop ended abnormally
├── ResourceExpiredError         -- watch resource version too old (410)
└── DataUnavailableError         -- softened to empty values while learning
    ├── ResourceNotFoundError
    ├── SecretDecodeError
    └── NetworkDiscoveryError
"""

from __future__ import annotations


class KubeTemplateError(Exception):
    """Base class for all kubetemplate errors."""


class NamespaceNotMonitoredError(KubeTemplateError):
    """Raised when a render references a namespace that was never learned."""

    def __init__(self, namespace: str) -> None:
        super().__init__(f"namespace {namespace!r} not monitored (was the template learned?)")
        self.namespace = namespace


class NamespaceResolutionError(KubeTemplateError):
    """Raised when an empty namespace cannot be resolved from the environment."""


class UnrecognizedNetworkKindError(KubeTemplateError, ValueError):
    """Raised for an unknown argument to the Network accessor."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"unhandled network kind {kind!r}")
        self.kind = kind


class WatchFailureError(KubeTemplateError):
    """Raised when a watch subscription terminates abnormally.

    Not retried: the namespace's cache for this kind is stale from here on and
    the supervising process is expected to rebuild the engine.
    """

    def __init__(self, kind: str, namespace: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"watch for {kind} in namespace {namespace!r} failed{detail}")
        self.kind = kind
        self.namespace = namespace
        self.cause = cause


class ResourceExpiredError(KubeTemplateError):
    """The requested watch resource version is no longer available (HTTP 410)."""


class DataUnavailableError(KubeTemplateError):
    """A value could not be produced from the current state.

    During a learning pass these are logged and replaced by empty values so
    that dependency registration is not interrupted.
    """


class ResourceNotFoundError(DataUnavailableError):
    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} {name!r} not found in namespace {namespace!r}")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class SecretDecodeError(DataUnavailableError):
    def __init__(self, name: str, namespace: str, key: str, cause: Exception) -> None:
        super().__init__(f"failed to decode key {key!r} of Secret {name!r} in namespace {namespace!r}: {cause}")
        self.name = name
        self.namespace = namespace
        self.key = key
        self.cause = cause


class NetworkDiscoveryError(DataUnavailableError):
    def __init__(self, kind: str, detail: str) -> None:
        super().__init__(f"failed to discover {kind}: {detail}")
        self.kind = kind
