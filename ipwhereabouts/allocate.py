"""Assignment and release of addresses from a range against a reservation list."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field, replace
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network
from typing import Iterable, Optional, Sequence, Union

from . import logs
from .iphelpers import IPAddress, Network, compare_ips, get_ip_range, inc_ip, subnet_broadcast_ip

IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]


def _parse_ip(value: Union[IPAddress, str]) -> IPAddress:
    ip = value if isinstance(value, (IPv4Address, IPv6Address)) else ipaddress.ip_address(value)
    if isinstance(ip, IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _parse_optional_ip(value) -> Optional[IPAddress]:
    return None if value is None else _parse_ip(value)


def _parse_network(value: Union[Network, str]) -> Network:
    if isinstance(value, (IPv4Network, IPv6Network)):
        return value
    return ipaddress.ip_network(value, strict=False)


def _contains(network: Network, ip: IPAddress) -> bool:
    return ip.version == network.version and ip in network


def _interface(ip: IPAddress, network: Network) -> IPInterface:
    return ipaddress.ip_interface(f"{ip}/{network.prefixlen}")


def _format_list(items: Iterable[str]) -> str:
    return "[" + " ".join(items) + "]"


@dataclass
class IPReservation:
    """An address held by a container's interface."""

    ip: IPAddress
    container_id: str = ""
    pod_ref: str = ""
    if_name: str = ""

    def __post_init__(self) -> None:
        self.ip = _parse_ip(self.ip)


@dataclass
class RangeConfiguration:
    """A CIDR range with optional start and end addresses and excluded subnets."""

    range: str = ""
    range_start: Optional[IPAddress] = None
    range_end: Optional[IPAddress] = None
    omit_ranges: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.range_start = _parse_optional_ip(self.range_start)
        self.range_end = _parse_optional_ip(self.range_end)
        self.omit_ranges = list(self.omit_ranges or [])


class AssignmentError(Exception):
    """No free address is left in the requested range."""

    def __init__(self, first_ip, last_ip, network, exclude_ranges) -> None:
        self.first_ip = first_ip
        self.last_ip = last_ip
        self.network = network
        self.exclude_ranges = list(exclude_ranges or [])
        super().__init__(
            f"Could not allocate IP in range: ip: {first_ip} / - {last_ip} / range: {network} "
            f"/ excludeRanges: {_format_list(self.exclude_ranges)}"
        )


def assign_ip(
    range_config: RangeConfiguration,
    reserve_list: Optional[Sequence[IPReservation]],
    container_id: str,
    pod_ref: str,
    if_name: str,
) -> tuple[IPInterface, list[IPReservation]]:
    """Return an address for the pod interface and the updated reservation list.

    An existing reservation for the same pod and interface is reused, with its
    container id brought up to date.
    """
    network = _parse_network(range_config.range)
    reservations = list(reserve_list or [])

    for index, reservation in enumerate(reservations):
        if reservation.pod_ref == pod_ref and reservation.if_name == if_name:
            logs.debugf(
                "IP already allocated for podRef: %r - ifName:%r - IP: %s",
                pod_ref,
                if_name,
                reservation.ip,
            )
            if reservation.container_id != container_id:
                logs.debugf("updating container ID: %r", container_id)
                reservations[index] = replace(reservation, container_id=container_id)
            return _interface(reservation.ip, network), reservations

    ip, reservations = iterate_for_assignment(
        network,
        range_config.range_start,
        range_config.range_end,
        reservations,
        range_config.omit_ranges,
        container_id,
        pod_ref,
        if_name,
    )
    return _interface(ip, network), reservations


def deallocate_ip(
    reserve_list: Sequence[IPReservation], container_id: str, if_name: str
) -> tuple[list[IPReservation], Optional[IPAddress]]:
    """Drop the reservation of a container interface.

    Returns the updated list and the released address, or the list unchanged and
    None when there is no such reservation. The last reservation takes the place
    of the removed one.
    """
    reservations = list(reserve_list or [])
    index = next(
        (
            i
            for i, reservation in enumerate(reservations)
            if reservation.container_id == container_id and reservation.if_name == if_name
        ),
        None,
    )
    if index is None:
        return reservations, None

    ip = reservations[index].ip
    logs.debugf("Deallocating given previously used IP: %s", ip)
    reservations[index] = reservations[-1]
    reservations.pop()
    return reservations, ip


def parse_excluded_range(text: str) -> Network:
    """Parse a CIDR, or a single address taken as a /32 or /128 subnet."""
    _, slash, prefix = text.partition("/")
    if slash:
        if not (prefix.isascii() and prefix.isdigit()):
            raise ValueError(f"invalid CIDR address: {text}")
        try:
            return ipaddress.ip_network(text, strict=False)
        except ValueError as exc:
            raise ValueError(f"invalid CIDR address: {text}") from exc
    try:
        ip = _parse_ip(text)
    except ValueError as exc:
        raise ValueError(f"invalid CIDR address: {text}") from exc
    return ipaddress.ip_network(f"{ip}/{ip.max_prefixlen}")


def _skip_excluded_subnets(ip: IPAddress, excluded: Iterable[Network]) -> Optional[IPAddress]:
    for subnet in excluded:
        if _contains(subnet, ip):
            broadcast = subnet_broadcast_ip(subnet)
            logs.debugf("excluding %s and moving to the end of the excluded range: %s", subnet, broadcast)
            return broadcast
    return None


def iterate_for_assignment(
    network,
    range_start,
    range_end,
    reserve_list: Optional[Sequence[IPReservation]],
    exclude_ranges: Optional[Sequence[str]],
    container_id: str,
    pod_ref: str,
    if_name: str,
) -> tuple[IPAddress, list[IPReservation]]:
    """Reserve the lowest free address of the range.

    Candidates lie within the subnet, excluding its network and broadcast
    addresses, bounded by ``range_start`` and ``range_end`` where those are usable.
    Reserved addresses and whole excluded subnets are skipped. Returns the address
    and the reservation list with the new reservation appended.
    """
    net = _parse_network(network)
    reservations = list(reserve_list or [])
    excludes = list(exclude_ranges or [])

    try:
        first_ip, last_ip = get_ip_range(
            net, _parse_optional_ip(range_start), _parse_optional_ip(range_end)
        )
    except ValueError as exc:
        logs.errorf("GetIPRange request failed with: %s", exc)
        raise
    logs.debugf(
        "IterateForAssignment input >> range_start: %s | range_end: %s | ipnet: %s | first IP: %s | last IP: %s",
        range_start,
        range_end,
        net,
        first_ip,
        last_ip,
    )

    reserved = {str(reservation.ip) for reservation in reservations}

    excluded = []
    for text in excludes:
        try:
            excluded.append(parse_excluded_range(text))
        except ValueError as exc:
            raise ValueError(f'could not parse exclude range, err: "{exc}"') from exc

    ip = first_ip
    while _contains(net, ip) and compare_ips(ip, last_ip) <= 0:
        if str(ip) not in reserved:
            skip_to = _skip_excluded_subnets(ip, excluded)
            if skip_to is None:
                logs.debugf(
                    "Reserving IP: %r - container ID %r - podRef: %r - ifName: %r",
                    str(ip),
                    container_id,
                    pod_ref,
                    if_name,
                )
                reservations.append(
                    IPReservation(ip=ip, container_id=container_id, pod_ref=pod_ref, if_name=if_name)
                )
                return ip, reservations
            ip = skip_to
        ip = inc_ip(ip)

    raise AssignmentError(first_ip, last_ip, net, excludes)