"""Port interfaces - Layer boundary contracts.

    ContextStorePort   - Conversation context and execution history
    ToolDispatcherPort - Tool execution (external collaborator)
    ImageStorePort     - Image bytes by reference
    StoragePort        - Generic key-value persistence
"""

from editguard.ports.context_store_port import ContextStorePort
from editguard.ports.dispatcher_port import ToolDispatcherPort
from editguard.ports.image_store_port import ImageStorePort
from editguard.ports.storage_port import StoragePort

__all__ = [
    "ContextStorePort",
    "ImageStorePort",
    "StoragePort",
    "ToolDispatcherPort",
]
