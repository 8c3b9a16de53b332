# ipwhereabouts

IP address management for container networks. The package works with Python's
`ipaddress` types and has no third-party dependencies.

## Modules

- **`ipwhereabouts.iphelpers`**: address arithmetic on IPv4 and IPv6.
  - `compare_ips`, `is_ip_in_range` and `is_ipv4` compare and classify addresses.
  - `network_ip`, `subnet_broadcast_ip`, `first_usable_ip`, `last_usable_ip` and
    `has_usable_ips` describe a subnet.
  - `inc_ip` and `dec_ip` step an address, wrapping within its family.
  - `ip_get_offset` and `ip_add_offset` compute and apply offsets.
  - `get_ip_range` returns the assignable span of a subnet, honouring an optional start
    and end address when they fall inside it.
  - `divide_range_by_size` splits an IPv4 network into equal slices, for example
    `divide_range_by_size("10.0.0.0/8", "/10")`.
- **`ipwhereabouts.allocate`**: picking and releasing addresses.
  - `iterate_for_assignment` reserves the lowest free address of a range. It skips
    reserved addresses and whole exclude ranges, which are given as CIDRs or as single
    addresses.
  - `assign_ip` reuses an existing reservation for the same pod and interface. It
    updates the container id of that reservation, and otherwise allocates through
    `iterate_for_assignment`.
  - `deallocate_ip` removes a container interface's reservation and returns the
    released address.
  - Reservations are `IPReservation` records. Ranges are `RangeConfiguration` records.
    When a range is exhausted, `AssignmentError` is raised.
- **`ipwhereabouts.api`**: plain records for the `whereabouts.cni.cncf.io/v1alpha1`
  resources.
  - The records are `IPPool`, `NodeSlicePool` and `OverlappingRangeIPReservation`,
    together with their spec, status and list types.
  - Each of the three has `to_dict` and `from_dict` for its JSON form.
  - `IPPool` and `NodeSlicePool` also have `parse_cidr`.
  - `kind` and `resource` qualify a name with the API group.
- **`ipwhereabouts.config`**: loading the IPAM section of a CNI network configuration.
  - `load_ipam_config` loads a single plugin and returns the `IPAMConfig` together with
    the CNI version.
  - `load_ipam_configuration` accepts a single plugin or a plugin list. For a list it
    uses the first plugin.
  - Missing settings are filled from the first flat configuration file found by
    `get_flat_ipam`. That function looks first at the IPAM's `configuration_path`, then
    at the default locations, then at any extra paths passed in.
  - Ranges such as `192.168.1.5-192.168.1.25/24` are split into a CIDR, a start and an
    end, and leading zeros in IPv4 fields are accepted.
  - CNI arguments (`KEY=VALUE;...`) are parsed by `parse_cni_args`.
  - Errors raise `ConfigError` or its subclasses:
    - `InvalidPluginError`, when the IPAM type is not `whereabouts`;
    - `ConfigFileNotFoundError`, when no flat file exists.
- **`ipwhereabouts.logs`**: leveled, timestamped log lines to stderr and/or a log file.
  - The levels are panic, error, verbose and debug.
  - Configure it with `set_log_level`, `set_log_stderr`, `set_log_file` and `reset`.

## Example

```python
import ipaddress

from ipwhereabouts.allocate import iterate_for_assignment
from ipwhereabouts.iphelpers import get_ip_range

network = ipaddress.ip_network("192.168.0.0/28")
first, last = get_ip_range(network, None, None)   # 192.168.0.1 .. 192.168.0.14

ip, reservations = iterate_for_assignment(
    network, None, None, [], ["192.168.0.0/30"], "container-1", "default/pod-a", "eth0"
)
print(ip)   # 192.168.0.4
```

## What it does not do

The package is a library only. It has no command to run. It does not store pools or
reservations anywhere, and it does not talk to a cluster API. The `api` records are
only converted to and from dictionaries, and keeping them is left to the caller. There
is no controller that watches pods and frees their addresses.

`load_ipam_config` requires a `kubernetes.kubeconfig` setting. The package only checks
that this setting is present; it never uses it. Loading also fails with
`ConfigFileNotFoundError` when no flat configuration file exists at any of the searched
paths.

## Tests

```
pip install -e .[test]
pytest
```