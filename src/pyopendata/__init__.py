"""pyopendata - Async sync and caching engine for the Saudi open data portal."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyopendata")
except PackageNotFoundError:
    __version__ = "0+local"
from pyopendata._cache import CacheStats, CacheStore, FileCacheBackend, MemoryCacheBackend
from pyopendata.client import OpenDataClient
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import (
    FailureKind,
    OpenDataChallengeBlocked,
    OpenDataConfigError,
    OpenDataEmptyPayload,
    OpenDataError,
    OpenDataNoResourcesError,
    OpenDataNoTabularResourceError,
    OpenDataParseError,
    OpenDataStorageError,
    OpenDataTransportError,
    OpenDataUpstreamRejection,
)
from pyopendata.materializer import MaterializedResource, ResourceMaterializer
from pyopendata.models import (
    DatasetListing,
    DatasetMetadata,
    DatasetResolution,
    DatasetResource,
    FetchedPayload,
    PayloadSource,
)
from pyopendata.orchestrator import DiscoveryReport, SyncContext, SyncOrchestrator, SyncReport
from pyopendata.outcomes import Failure
from pyopendata.resolver import RemoteResolver
from pyopendata.state.models import DatasetRecordState, SyncState
from pyopendata.state.policy import ChangeKind, DatasetChange, classify_change
from pyopendata.state.registry import DiscoveredDataset, DiscoveryRegistry, DiscoveryState
from pyopendata.state.store import SyncStateStore

__all__ = [
    "__version__",
    "CacheStats",
    "CacheStore",
    "ChangeKind",
    "DatasetChange",
    "DatasetListing",
    "DatasetMetadata",
    "DatasetRecordState",
    "DatasetResolution",
    "DatasetResource",
    "DiscoveredDataset",
    "DiscoveryRegistry",
    "DiscoveryReport",
    "DiscoveryState",
    "Failure",
    "FailureKind",
    "FetchedPayload",
    "FileCacheBackend",
    "MaterializedResource",
    "MemoryCacheBackend",
    "OpenDataChallengeBlocked",
    "OpenDataClient",
    "OpenDataConfig",
    "OpenDataConfigError",
    "OpenDataEmptyPayload",
    "OpenDataError",
    "OpenDataNoResourcesError",
    "OpenDataNoTabularResourceError",
    "OpenDataParseError",
    "OpenDataStorageError",
    "OpenDataTransportError",
    "OpenDataUpstreamRejection",
    "PayloadSource",
    "RemoteResolver",
    "ResourceMaterializer",
    "SyncContext",
    "SyncOrchestrator",
    "SyncReport",
    "SyncState",
    "SyncStateStore",
    "classify_change",
]
