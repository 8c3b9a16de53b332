"""Resource types of the whereabouts.cni.cncf.io/v1alpha1 API and their JSON form."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Union

GROUP_NAME = "whereabouts.cni.cncf.io"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP_NAME}/{VERSION}"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def kind(name: str) -> tuple[str, str]:
    """Return the (group, kind) pair qualifying an unqualified kind."""
    return (GROUP_NAME, name)


def resource(name: str) -> tuple[str, str]:
    """Return the (group, resource) pair qualifying an unqualified resource."""
    return (GROUP_NAME, name)


def _parse_cidr(text: str) -> tuple[IPAddress, Network]:
    if "/" not in text:
        raise ValueError(f"invalid CIDR address: {text}")
    try:
        interface = ipaddress.ip_interface(text)
    except ValueError as exc:
        raise ValueError(f"invalid CIDR address: {text}") from exc
    return interface.ip, interface.network


def _check_kind(data: Mapping[str, Any], expected: str) -> None:
    if not isinstance(data, Mapping):
        raise ValueError(f"expected a mapping for {expected}, got {type(data).__name__}")
    found = data.get("kind")
    if found not in (None, "", expected):
        raise ValueError(f"expected kind {expected}, got {found}")


@dataclass
class ObjectMeta:
    """Object metadata kept with each resource."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    resource_version: str = ""


def _meta_to_dict(meta: ObjectMeta) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if meta.name:
        out["name"] = meta.name
    if meta.namespace:
        out["namespace"] = meta.namespace
    if meta.labels:
        out["labels"] = dict(meta.labels)
    if meta.annotations:
        out["annotations"] = dict(meta.annotations)
    if meta.resource_version:
        out["resourceVersion"] = meta.resource_version
    return out


def _meta_from_dict(data: Mapping[str, Any] | None) -> ObjectMeta:
    data = data or {}
    return ObjectMeta(
        name=data.get("name", ""),
        namespace=data.get("namespace", ""),
        labels=dict(data.get("labels") or {}),
        annotations=dict(data.get("annotations") or {}),
        resource_version=data.get("resourceVersion", ""),
    )


@dataclass
class IPAllocation:
    """The pod and container owning one address of a pool."""

    container_id: str = ""
    pod_ref: str = ""
    if_name: str = ""


def _allocation_to_dict(allocation: IPAllocation) -> dict[str, Any]:
    out: dict[str, Any] = {"id": allocation.container_id, "podref": allocation.pod_ref}
    if allocation.if_name:
        out["ifname"] = allocation.if_name
    return out


def _allocation_from_dict(data: Mapping[str, Any]) -> IPAllocation:
    return IPAllocation(
        container_id=data.get("id", ""),
        pod_ref=data.get("podref", ""),
        if_name=data.get("ifname", ""),
    )


@dataclass
class IPPoolSpec:
    """A CIDR range and its allocations, keyed by offset within the range."""

    range: str = ""
    allocations: dict[str, IPAllocation] = field(default_factory=dict)


@dataclass
class IPPool:
    """A pool of addresses for one range."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: IPPoolSpec = field(default_factory=IPPoolSpec)

    KIND: ClassVar[str] = "IPPool"

    def parse_cidr(self) -> tuple[IPAddress, Network]:
        """Return the address and network of the pool's range."""
        return _parse_cidr(self.spec.range)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of the pool."""
        return {
            "apiVersion": API_VERSION,
            "kind": self.KIND,
            "metadata": _meta_to_dict(self.metadata),
            "spec": {
                "range": self.spec.range,
                "allocations": {
                    key: _allocation_to_dict(value) for key, value in self.spec.allocations.items()
                },
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IPPool":
        """Build a pool from its JSON-ready form."""
        _check_kind(data, cls.KIND)
        spec = data.get("spec") or {}
        allocations = spec.get("allocations") or {}
        return cls(
            metadata=_meta_from_dict(data.get("metadata")),
            spec=IPPoolSpec(
                range=spec.get("range", ""),
                allocations={key: _allocation_from_dict(value) for key, value in allocations.items()},
            ),
        )


@dataclass
class IPPoolList:
    """A list of IP pools."""

    items: list[IPPool] = field(default_factory=list)
    resource_version: str = ""


@dataclass
class NodeSliceAllocation:
    """A slice of a range and the node it is assigned to; an empty node name marks it free."""

    node_name: str = ""
    slice_range: str = ""


@dataclass
class NodeSlicePoolSpec:
    """A whole range and the size of the slices handed to nodes."""

    range: str = ""
    slice_size: str = ""


@dataclass
class NodeSlicePoolStatus:
    """Assignments of nodes to slices."""

    allocations: list[NodeSliceAllocation] = field(default_factory=list)


@dataclass
class NodeSlicePool:
    """A range divided into per-node slices."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: NodeSlicePoolSpec = field(default_factory=NodeSlicePoolSpec)
    status: NodeSlicePoolStatus = field(default_factory=NodeSlicePoolStatus)

    KIND: ClassVar[str] = "NodeSlicePool"

    def parse_cidr(self) -> tuple[IPAddress, Network]:
        """Return the address and network of the pool's range."""
        return _parse_cidr(self.spec.range)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of the pool."""
        return {
            "apiVersion": API_VERSION,
            "kind": self.KIND,
            "metadata": _meta_to_dict(self.metadata),
            "spec": {"range": self.spec.range, "sliceSize": self.spec.slice_size},
            "status": {
                "allocations": [
                    {"nodeName": allocation.node_name, "sliceRange": allocation.slice_range}
                    for allocation in self.status.allocations
                ]
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodeSlicePool":
        """Build a pool from its JSON-ready form."""
        _check_kind(data, cls.KIND)
        spec = data.get("spec") or {}
        status = data.get("status") or {}
        return cls(
            metadata=_meta_from_dict(data.get("metadata")),
            spec=NodeSlicePoolSpec(range=spec.get("range", ""), slice_size=spec.get("sliceSize", "")),
            status=NodeSlicePoolStatus(
                allocations=[
                    NodeSliceAllocation(
                        node_name=item.get("nodeName", ""), slice_range=item.get("sliceRange", "")
                    )
                    for item in status.get("allocations") or []
                ]
            ),
        )


@dataclass
class NodeSlicePoolList:
    """A list of node slice pools."""

    items: list[NodeSlicePool] = field(default_factory=list)
    resource_version: str = ""


@dataclass
class OverlappingRangeIPReservationSpec:
    """The owner of an address reserved across overlapping ranges."""

    container_id: str = ""
    pod_ref: str = ""
    if_name: str = ""


@dataclass
class OverlappingRangeIPReservation:
    """A cluster-wide reservation of one address."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: OverlappingRangeIPReservationSpec = field(default_factory=OverlappingRangeIPReservationSpec)

    KIND: ClassVar[str] = "OverlappingRangeIPReservation"

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of the reservation."""
        spec: dict[str, Any] = {}
        if self.spec.container_id:
            spec["containerid"] = self.spec.container_id
        spec["podref"] = self.spec.pod_ref
        if self.spec.if_name:
            spec["ifname"] = self.spec.if_name
        return {
            "apiVersion": API_VERSION,
            "kind": self.KIND,
            "metadata": _meta_to_dict(self.metadata),
            "spec": spec,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OverlappingRangeIPReservation":
        """Build a reservation from its JSON-ready form."""
        _check_kind(data, cls.KIND)
        spec = data.get("spec") or {}
        return cls(
            metadata=_meta_from_dict(data.get("metadata")),
            spec=OverlappingRangeIPReservationSpec(
                container_id=spec.get("containerid", ""),
                pod_ref=spec.get("podref", ""),
                if_name=spec.get("ifname", ""),
            ),
        )


@dataclass
class OverlappingRangeIPReservationList:
    """A list of overlapping-range reservations."""

    items: list[OverlappingRangeIPReservation] = field(default_factory=list)
    resource_version: str = ""


KNOWN_TYPES: dict[str, type] = {
    "IPPool": IPPool,
    "IPPoolList": IPPoolList,
    "OverlappingRangeIPReservation": OverlappingRangeIPReservation,
    "OverlappingRangeIPReservationList": OverlappingRangeIPReservationList,
    "NodeSlicePool": NodeSlicePool,
    "NodeSlicePoolList": NodeSlicePoolList,
}