"""Choosing the address through which a node is reached."""

from __future__ import annotations

from typing import Iterable

from nodemetrics.types import Node, NodeAddressType

# Overrides first, internal before external, DNS before IP.
DEFAULT_ADDRESS_TYPE_PRIORITY: tuple[NodeAddressType, ...] = (
    NodeAddressType.HOSTNAME,
    NodeAddressType.INTERNAL_DNS,
    NodeAddressType.INTERNAL_IP,
    NodeAddressType.EXTERNAL_DNS,
    NodeAddressType.EXTERNAL_IP,
)


class AddressNotFoundError(LookupError):
    """Raised when a node reports no address of any accepted type."""


class PriorityNodeAddressResolver:
    """Resolves by address type priority, then by order within a type."""

    def __init__(
        self, type_priority: Iterable[NodeAddressType] = DEFAULT_ADDRESS_TYPE_PRIORITY
    ) -> None:
        self.type_priority = tuple(type_priority)

    def node_address(self, node: Node) -> str:
        for address_type in self.type_priority:
            match = next(
                (addr.address for addr in node.addresses if addr.type == address_type),
                None,
            )
            if match is not None:
                return match
        names = " ".join(getattr(t, "value", str(t)) for t in self.type_priority)
        raise AddressNotFoundError(f"no address matched types [{names}]")