"""Arithmetic and range helpers for IPv4 and IPv6 addresses and subnets."""

from __future__ import annotations

import ipaddress
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network
from typing import Optional, Union

IPAddress = Union[IPv4Address, IPv6Address]
Network = Union[IPv4Network, IPv6Network]

_V4_MAPPED_PREFIX = 0xFFFF << 32
_UINT64_MASK = (1 << 64) - 1
_UINT32_MAX = (1 << 32) - 1


def _as_ip(value: Union[IPAddress, str]) -> IPAddress:
    ip = value if isinstance(value, (IPv4Address, IPv6Address)) else ipaddress.ip_address(value)
    if isinstance(ip, IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _as_network(value: Union[Network, str]) -> Network:
    if isinstance(value, (IPv4Network, IPv6Network)):
        return value
    return ipaddress.ip_network(value, strict=False)


def _to16(ip: IPAddress) -> int:
    """Integer value of the 16-byte form, IPv4 addresses being IPv4-mapped."""
    if isinstance(ip, IPv4Address):
        return _V4_MAPPED_PREFIX | int(ip)
    return int(ip)


def _from16(value: int) -> IPAddress:
    address = IPv6Address(value % (1 << 128))
    return address.ipv4_mapped or address


def compare_ips(ip_x, ip_y) -> int:
    """Return -1, 0 or 1 as ``ip_x`` is smaller than, equal to or larger than ``ip_y``."""
    x = _to16(_as_ip(ip_x))
    y = _to16(_as_ip(ip_y))
    return (x > y) - (x < y)


def divide_range_by_size(input_network: str, slice_size: str) -> list[str]:
    """Split an IPv4 network such as ``10.0.0.0/8`` into subnets of prefix ``slice_size``."""
    size_text = slice_size[1:] if slice_size.startswith("/") else slice_size
    try:
        size = int(size_text)
    except ValueError as exc:
        raise ValueError(f"invalid slice size {slice_size!r}") from exc

    address_text, _, _ = input_network.partition("/")
    try:
        address = ipaddress.ip_address(address_text)
        network = ipaddress.ip_network(input_network, strict=False)
    except ValueError as exc:
        raise ValueError(f"error parsing CIDR {input_network}: {exc}") from exc
    if address != network.network_address:
        raise ValueError("netCIDR is not a valid network address")
    if network.prefixlen > size:
        raise ValueError("subnetMaskSize must be greater or equal than netMaskSize")
    if not isinstance(network, IPv4Network):
        raise ValueError("cannot divide an IPv6 range into slices")
    if size > network.max_prefixlen:
        raise ValueError(f"invalid slice size {slice_size!r}")
    return [str(subnet) for subnet in network.subnets(new_prefix=size)]


def is_ip_in_range(ip, start, end) -> bool:
    """Return whether ``ip`` lies between ``start`` and ``end`` inclusively."""
    if ip is None or start is None or end is None:
        raise ValueError(
            "cannot determine if IP is in range, either of the values is 'None', "
            f"in: {ip}, start: {start}, end: {end}"
        )
    return compare_ips(ip, start) >= 0 and compare_ips(ip, end) <= 0


def network_ip(network) -> IPAddress:
    """Return the network address of a subnet."""
    return _as_network(network).network_address


def subnet_broadcast_ip(network) -> IPAddress:
    """Return the broadcast (last) address of a subnet."""
    return _as_network(network).broadcast_address


def has_usable_ips(network) -> bool:
    """Return whether the subnet has addresses besides its network and broadcast address."""
    net = _as_network(network)
    return net.max_prefixlen - net.prefixlen > 1


def _require_usable(net: Network) -> None:
    if not has_usable_ips(net):
        raise ValueError(
            f"net mask is too short, subnet {net} has no usable IP addresses, it is too small"
        )


def first_usable_ip(network) -> IPAddress:
    """Return the first address after the network address."""
    net = _as_network(network)
    _require_usable(net)
    return inc_ip(net.network_address)


def last_usable_ip(network) -> IPAddress:
    """Return the last address before the broadcast address."""
    net = _as_network(network)
    _require_usable(net)
    return dec_ip(net.broadcast_address)


def inc_ip(ip) -> IPAddress:
    """Return the next address, wrapping around within the address family."""
    address = _as_ip(ip)
    return type(address)((int(address) + 1) % (1 << address.max_prefixlen))


def dec_ip(ip) -> IPAddress:
    """Return the previous address, wrapping around within the address family."""
    address = _as_ip(ip)
    return type(address)((int(address) - 1) % (1 << address.max_prefixlen))


def ip_get_offset(ip1, ip2) -> int:
    """Return the absolute distance between two addresses of the same family, as a uint64."""
    a, b = _as_ip(ip1), _as_ip(ip2)
    if isinstance(a, IPv4Address) and not isinstance(b, IPv4Address):
        raise ValueError(f"cannot calculate offset between IPv4 ({a}) and IPv6 address ({b})")
    if not isinstance(a, IPv4Address) and isinstance(b, IPv4Address):
        raise ValueError(f"cannot calculate offset between IPv6 ({a}) and IPv4 address ({b})")
    return abs(_to16(a) - _to16(b)) & _UINT64_MASK


def ip_add_offset(ip, offset: int) -> Optional[IPAddress]:
    """Return ``ip`` advanced by ``offset``; None if an IPv4 offset is out of range."""
    if offset < 0:
        raise ValueError("offset must not be negative")
    address = _as_ip(ip)
    if isinstance(address, IPv4Address) and offset >= _UINT32_MAX:
        return None
    return _from16(_to16(address) + (offset & _UINT64_MASK))


def is_ipv4(ip) -> bool:
    """Return whether the address is an IPv4 address."""
    return isinstance(_as_ip(ip), IPv4Address)


def get_ip_range(network, range_start=None, range_end=None) -> tuple[IPAddress, IPAddress]:
    """Return the first and last assignable address of a subnet.

    ``range_start`` and ``range_end`` are used only when they fall inside the usable
    addresses; a ``range_end`` below the effective start is ignored.
    """
    net = _as_network(network)
    first = first_usable_ip(net)
    last = last_usable_ip(net)
    if range_start is not None:
        start = _as_ip(range_start)
        if is_ip_in_range(start, first, last):
            first = start
    if range_end is not None:
        end = _as_ip(range_end)
        if is_ip_in_range(end, first, last):
            last = end
    return first, last