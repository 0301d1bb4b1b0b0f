"""Gateway implementations."""

from content_mapper.gateways.memory import MemoryGateway
from content_mapper.gateways.sqlite import SqliteGateway

__all__ = ["MemoryGateway", "SqliteGateway"]
