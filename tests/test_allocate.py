import ipaddress

import pytest

from ipwhereabouts.allocate import (
    AssignmentError,
    IPReservation,
    RangeConfiguration,
    assign_ip,
    deallocate_ip,
    iterate_for_assignment,
    parse_excluded_range,
)


def _net_and_start(cidr):
    network = ipaddress.ip_network(cidr, strict=False)
    return network, network.network_address


def _first_ip(cidr):
    return ipaddress.ip_interface(cidr).ip


@pytest.mark.parametrize(
    "cidr, expected",
    [
        ("192.168.1.1/24", "192.168.1.1"),
        ("caa5::0/112", "caa5::1"),
        ("::1/126", "::1"),
        ("fd::1/116", "fd::1"),
        ("100::2:1/126", "100::2:1"),
    ],
)
def test_iterate_basic(cidr, expected):
    network, start = _net_and_start(cidr)
    ip, _ = iterate_for_assignment(network, start, None, [], [], "0xdeadbeef", "", "")
    assert str(ip) == expected


@pytest.mark.parametrize(
    "cidr, exclude, expected",
    [
        ("192.168.0.0/29", ["192.168.0.0/30"], "192.168.0.4"),
        ("192.168.0.0/29", ["192.168.0.1"], "192.168.0.2"),
        ("100::2:1/125", ["100::2:1/126"], "100::2:4"),
        ("100::2:1/125", ["100::2:1"], "100::2:2"),
        ("2001:db8::/30", ["2001:db8::0/32"], "2001:db9::"),
    ],
)
def test_iterate_excluding(cidr, exclude, expected):
    network, start = _net_and_start(cidr)
    ip, _ = iterate_for_assignment(network, start, None, [], exclude, "0xdeadbeef", "", "")
    assert str(ip) == expected


@pytest.mark.parametrize(
    "cidr, exclude",
    [("192.168.0.0/29", ["192.168.0.1/123"]), ("100::2:1/125", ["100::2::1"])],
)
def test_invalid_exclude_range(cidr, exclude):
    network, start = _net_and_start(cidr)
    with pytest.raises(ValueError, match=r"^could not parse exclude range"):
        iterate_for_assignment(network, start, None, [], exclude, "0xdeadbeef", "", "")


def test_iterate_excluding_unsorted_ranges():
    network, start = _net_and_start("192.168.0.0/28")
    exclude = ["192.168.0.0/30", "192.168.0.6/31", "192.168.0.8/31", "192.168.0.4/30"]
    ip, _ = iterate_for_assignment(network, start, None, [], exclude, "0xdeadbeef", "", "")
    assert str(ip) == "192.168.0.10"

    exclude = ["192.168.0.0/30", "192.168.0.14/31", "192.168.0.4/30", "192.168.0.6/31", "192.168.0.8/31"]
    ip, _ = iterate_for_assignment(network, start, None, [], exclude, "0xdeadbeef", "", "")
    assert str(ip) == "192.168.0.10"


def _reservations(*ips):
    return [IPReservation(ip=ip, pod_ref="default/pod1") for ip in ips]


@pytest.mark.parametrize(
    "cidr, reserved, exclude",
    [
        ("192.168.0.0/29", ["192.168.0.4", "192.168.0.5", "192.168.0.6"], ["192.168.0.0/30"]),
        ("192.168.0.0/29", ["192.168.0.1", "192.168.0.2", "192.168.0.3"], ["192.168.0.4/30"]),
        ("100::2:1/125", ["100::2:1", "100::2:2", "100::2:3"], ["100::2:4/126"]),
    ],
)
def test_iterate_exhausted_range(cidr, reserved, exclude):
    network = ipaddress.ip_network(cidr, strict=False)
    with pytest.raises(AssignmentError, match=r"^Could not allocate IP in range"):
        iterate_for_assignment(
            network, _first_ip(cidr), None, _reservations(*reserved), exclude, "0xdeadbeef", "", ""
        )


def test_range_start_out_of_bounds_is_ignored():
    network = ipaddress.ip_network("192.168.0.0/29")
    ip, _ = iterate_for_assignment(
        network, ipaddress.ip_address("192.168.0.0"), None, None, None, "0xdeadbeef", "", ""
    )
    assert str(ip) == "192.168.0.1"


def test_range_start_and_end_out_of_bounds_are_ignored():
    network = ipaddress.ip_network("192.168.0.0/29")
    ip, _ = iterate_for_assignment(
        network,
        ipaddress.ip_address("192.168.0.0"),
        ipaddress.ip_address("192.168.0.8"),
        None,
        None,
        "0xdeadbeef",
        "",
        "",
    )
    assert str(ip) == "192.168.0.1"


def test_range_end_respected_within_exclude_range():
    network = ipaddress.ip_network("192.168.0.0/28")
    reserved = _reservations("192.168.0.1", "192.168.0.2", "192.168.0.3")
    with pytest.raises(AssignmentError, match=r"^Could not allocate IP in range"):
        iterate_for_assignment(
            network, "192.168.0.1", "192.168.0.6", reserved, ["192.168.0.4/30"], "0xdeadbeef", "", ""
        )


def test_empty_reserve_list_is_updated():
    network = ipaddress.ip_network("192.168.0.0/28")
    _, reservations = iterate_for_assignment(
        network, "192.168.0.1", "192.168.0.6", [], None, "0xdeadbeef", "dummy-0", ""
    )
    assert len(reservations) == 1
    assert str(reservations[0].ip) == "192.168.0.1"
    assert reservations[0].pod_ref == "dummy-0"
    assert reservations[0].container_id == "0xdeadbeef"


def test_reserve_list_is_updated():
    network = ipaddress.ip_network("192.168.0.0/28")
    reserved = _reservations("192.168.0.1", "192.168.0.2", "192.168.0.3")
    _, reservations = iterate_for_assignment(
        network, "192.168.0.1", "192.168.0.6", reserved, None, "0xdeadbeef", "dummy-0", ""
    )
    assert len(reservations) == 4
    assert str(reservations[3].ip) == "192.168.0.4"


def test_reserve_list_with_hole_is_updated():
    network = ipaddress.ip_network("192.168.0.0/28")
    reserved = _reservations("192.168.0.1", "192.168.0.2", "192.168.0.5")
    _, reservations = iterate_for_assignment(
        network, "192.168.0.1", "192.168.0.6", reserved, None, "0xdeadbeef", "dummy-0", ""
    )
    assert len(reservations) == 4
    assert str(reservations[3].ip) == "192.168.0.3"


def test_iterate_fails_for_too_small_subnet():
    with pytest.raises(ValueError, match=r"^net mask is too short"):
        iterate_for_assignment("192.168.0.0/31", None, None, [], [], "id", "pod", "eth0")


def test_assign_ip_new_reservation():
    config = RangeConfiguration(range="192.168.0.0/28", range_start="192.168.0.1")
    interface, reservations = assign_ip(config, [], "c1", "default/pod1", "eth0")
    assert interface == ipaddress.ip_interface("192.168.0.1/28")
    assert reservations == [
        IPReservation(ip="192.168.0.1", container_id="c1", pod_ref="default/pod1", if_name="eth0")
    ]


def test_assign_ip_reuses_existing_and_updates_container_id():
    config = RangeConfiguration(range="192.168.0.0/28")
    existing = [
        IPReservation(ip="192.168.0.1", container_id="c0", pod_ref="default/other", if_name="eth0"),
        IPReservation(ip="192.168.0.7", container_id="old", pod_ref="default/pod1", if_name="eth0"),
    ]
    interface, reservations = assign_ip(config, existing, "new", "default/pod1", "eth0")
    assert interface == ipaddress.ip_interface("192.168.0.7/28")
    assert len(reservations) == 2
    assert reservations[1].container_id == "new"
    assert existing[1].container_id == "old"


def test_assign_ip_respects_omit_ranges():
    config = RangeConfiguration(range="192.168.0.0/29", omit_ranges=["192.168.0.0/30"])
    interface, _ = assign_ip(config, None, "c1", "default/pod1", "eth0")
    assert str(interface.ip) == "192.168.0.4"


def test_deallocate_ip_moves_last_into_place():
    reservations = [
        IPReservation(ip="10.0.0.1", container_id="a", if_name="eth0"),
        IPReservation(ip="10.0.0.2", container_id="b", if_name="eth0"),
        IPReservation(ip="10.0.0.3", container_id="c", if_name="eth0"),
    ]
    updated, ip = deallocate_ip(reservations, "a", "eth0")
    assert ip == ipaddress.ip_address("10.0.0.1")
    assert [r.container_id for r in updated] == ["c", "b"]


def test_deallocate_ip_not_found():
    reservations = [IPReservation(ip="10.0.0.1", container_id="a", if_name="eth0")]
    updated, ip = deallocate_ip(reservations, "a", "eth1")
    assert ip is None
    assert updated == reservations


def test_parse_excluded_range_single_addresses():
    assert parse_excluded_range("192.168.0.1") == ipaddress.ip_network("192.168.0.1/32")
    assert parse_excluded_range("100::2:1") == ipaddress.ip_network("100::2:1/128")


def test_parse_excluded_range_cidr_with_host_bits():
    assert parse_excluded_range("192.168.2.229/30") == ipaddress.ip_network("192.168.2.228/30")


@pytest.mark.parametrize("text", ["192.168.0.1/123", "100::2::1", "10.0.0.0/255.0.0.0", "bogus"])
def test_parse_excluded_range_invalid(text):
    with pytest.raises(ValueError, match="invalid CIDR address"):
        parse_excluded_range(text)