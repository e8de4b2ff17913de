from robojs.client.api import ApiClient, fetch_all_data, handle_error, refetch_task
from robojs.client.connection import ConnectionManager, ConnectionState
from robojs.client.errors import ApiResult, Err, ErrorKind, Ok, classify_error
from robojs.client.session import LiveSession
from robojs.client.store import ClientStore, Snapshot

__all__ = [
    "ApiClient",
    "ApiResult",
    "ClientStore",
    "ConnectionManager",
    "ConnectionState",
    "Err",
    "ErrorKind",
    "LiveSession",
    "Ok",
    "Snapshot",
    "classify_error",
    "fetch_all_data",
    "handle_error",
    "refetch_task",
]
