"""
Content store boundary: off-chain proposal metadata.
"""

from .gateway import GatewayContentStore, build_content_store
from .store import ContentStore, InMemoryContentStore, compute_cid

__all__ = [
    "ContentStore",
    "GatewayContentStore",
    "InMemoryContentStore",
    "build_content_store",
    "compute_cid",
]
