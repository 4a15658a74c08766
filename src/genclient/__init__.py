"""genclient - session, request and artifact pipeline for the AI generation dashboard."""

from .decoder import Artifact, ArtifactKind, decode_artifact
from .errors import DecodeError, ErrorKind, Failure, RequestError
from .feed import FeedState, PageCursor, PaginatedFeed
from .mutation import MutationController, MutationState, MutationStatus
from .resources import ResourceHandle, ResourceLifecycleManager
from .runtime import DashboardRuntime
from .session import SessionTokenManager

__version__ = "0.1.0"

__all__ = [
    "Artifact",
    "ArtifactKind",
    "DashboardRuntime",
    "DecodeError",
    "ErrorKind",
    "Failure",
    "FeedState",
    "MutationController",
    "MutationState",
    "MutationStatus",
    "PageCursor",
    "PaginatedFeed",
    "RequestError",
    "ResourceHandle",
    "ResourceLifecycleManager",
    "SessionTokenManager",
    "decode_artifact",
]
