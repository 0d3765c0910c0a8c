"""pybudbox - Async Python client for the BudBox grow rig controller."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pybudbox")
except PackageNotFoundError:
    __version__ = "0+local"
from pybudbox.client import BudboxClient
from pybudbox.config import BudboxConfig
from pybudbox.exceptions import (
    BudboxBlockedError,
    BudboxConfigError,
    BudboxError,
    BudboxProtocolError,
    BudboxRemoteUnreachableError,
    BudboxSchemaError,
    BudboxTransportError,
    BudboxUnknownVariableError,
)
from pybudbox.feed import StatusFeedParser, parse_status_feed
from pybudbox.link import DeviceLink
from pybudbox.models import (
    CommandAck,
    ConnectionState,
    DeviceSnapshot,
    DeviceVariable,
    FetchOutcome,
    ResourceState,
    StartResult,
    SyncRecord,
    VariableKind,
)
from pybudbox.simulator import FlowRate, ResourceSimulator
from pybudbox.state.events import LinkEvent, LinkEventKind
from pybudbox.sync import HttpResourceStore, ReconciliationSync, ResourceStore

__all__ = [
    "__version__",
    "BudboxBlockedError",
    "BudboxClient",
    "BudboxConfig",
    "BudboxConfigError",
    "BudboxError",
    "BudboxProtocolError",
    "BudboxRemoteUnreachableError",
    "BudboxSchemaError",
    "BudboxTransportError",
    "BudboxUnknownVariableError",
    "CommandAck",
    "ConnectionState",
    "DeviceLink",
    "DeviceSnapshot",
    "DeviceVariable",
    "FetchOutcome",
    "FlowRate",
    "HttpResourceStore",
    "LinkEvent",
    "LinkEventKind",
    "ReconciliationSync",
    "ResourceSimulator",
    "ResourceState",
    "ResourceStore",
    "StartResult",
    "StatusFeedParser",
    "SyncRecord",
    "VariableKind",
    "parse_status_feed",
]
