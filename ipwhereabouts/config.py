"""Loading and validation of the IPAM section of a network configuration."""

from __future__ import annotations

import copy
import ipaddress
import json
import os
from dataclasses import dataclass, field, fields, is_dataclass
from ipaddress import IPv4Address, IPv6Address
from typing import Any, Mapping, Optional, Union

from . import logs
from .allocate import RangeConfiguration
from .iphelpers import IPAddress, Network

DEFAULT_CONFIG_PATHS: tuple[str, ...] = (
    "/etc/kubernetes/cni/net.d/whereabouts.d/whereabouts.conf",
    "/etc/cni/net.d/whereabouts.d/whereabouts.conf",
    "/host/etc/cni/net.d/whereabouts.d/whereabouts.conf",
)

DEFAULT_LEADER_LEASE_DURATION = 1500
DEFAULT_LEADER_RENEW_DEADLINE = 1000
DEFAULT_LEADER_RETRY_PERIOD = 500

RELEVANT_IPAM_TYPE = "whereabouts"

_ENV_STRING_FIELDS = ("IP", "GATEWAY", "K8S_POD_NAME", "K8S_POD_NAMESPACE", "K8S_POD_INFRA_CONTAINER_ID")

IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]


class ConfigError(ValueError):
    """The configuration cannot be loaded or is invalid."""


class InvalidPluginError(ConfigError):
    """The IPAM section is meant for another plugin."""

    def __init__(self, ipam_type: str) -> None:
        self.ipam_type = ipam_type
        super().__init__(
            "only interested in networks whose IPAM type is 'whereabouts'. "
            f"This one was: {ipam_type}"
        )


class ConfigFileNotFoundError(ConfigError):
    """None of the flat configuration files exists."""

    def __init__(self) -> None:
        super().__init__("config file not found")


class _DecodeError(ValueError):
    pass


@dataclass
class KubernetesConfig:
    """Where the kubeconfig of the storage backend lives."""

    kubeconfig_path: str = ""


@dataclass
class Address:
    """A static address, with its optional gateway."""

    address_str: str = ""
    gateway: Optional[IPAddress] = None
    address: Optional[IPInterface] = None
    version: str = ""


@dataclass
class IPAMConfig:
    """The IPAM settings of one network."""

    name: str = ""
    type: str = ""
    routes: list[dict] = field(default_factory=list)
    datastore: str = ""
    addresses: list[Address] = field(default_factory=list)
    omit_ranges: list[str] = field(default_factory=list)
    range: str = ""
    range_start: Optional[IPAddress] = None
    range_end: Optional[IPAddress] = None
    ip_ranges: list[RangeConfiguration] = field(default_factory=list)
    node_slice_size: str = ""
    gateway_str: str = ""
    gateway: Optional[IPAddress] = None
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    configuration_path: str = ""
    pod_name: str = ""
    pod_namespace: str = ""
    network_name: str = ""
    overlapping_ranges: bool = True
    sleep_for_race: int = 0
    leader_lease_duration: int = 0
    leader_renew_deadline: int = 0
    leader_retry_period: int = 0
    log_file: str = ""
    log_level: str = ""
    reconciler_cron_expression: str = ""


# --- address parsing ------------------------------------------------------


def _parse_ip_sloppy(text: str) -> Optional[IPAddress]:
    """Parse an address, accepting leading zeros in IPv4 fields as decimal."""
    if not isinstance(text, str) or not text or "%" in text:
        return None
    if ":" not in text:
        parts = text.split(".")
        if len(parts) != 4 or not all(p.isascii() and p.isdigit() for p in parts):
            return None
        values = [int(p) for p in parts]
        if any(v > 255 for v in values):
            return None
        return IPv4Address(bytes(values))
    try:
        ip = ipaddress.ip_address(text)
    except ValueError:
        return None
    if isinstance(ip, IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _parse_cidr_sloppy(text: str) -> tuple[IPAddress, Network]:
    address, slash, prefix = text.partition("/")
    ip = _parse_ip_sloppy(address)
    if (
        not slash
        or ip is None
        or not (prefix.isascii() and prefix.isdigit())
        or int(prefix) > ip.max_prefixlen
    ):
        raise ValueError(f"invalid CIDR address: {text}")
    return ip, ipaddress.ip_network((ip, int(prefix)), strict=False)


# --- JSON decoding --------------------------------------------------------


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _object(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise _DecodeError(f"cannot unmarshal {_json_kind(value)} into {what}")
    return {key.lower(): item for key, item in value.items()}


def _get_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _DecodeError(f"cannot unmarshal {_json_kind(value)} into field {key} of type string")
    return value


def _get_int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise _DecodeError(f"cannot unmarshal {_json_kind(value)} into field {key} of type int")
    return value


def _get_bool(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise _DecodeError(f"cannot unmarshal {_json_kind(value)} into field {key} of type bool")
    return value


def _get_list(data: Mapping[str, Any], key: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise _DecodeError(f"cannot unmarshal {_json_kind(value)} into field {key} of type array")
    return value


def _get_str_list(data: Mapping[str, Any], key: str) -> list[str]:
    items = _get_list(data, key)
    for item in items:
        if not isinstance(item, str):
            raise _DecodeError(f"cannot unmarshal {_json_kind(item)} into field {key} of type string")
    return list(items)


def _get_ip(data: Mapping[str, Any], key: str, *, strict: bool) -> Optional[IPAddress]:
    text = _get_str(data, key)
    if not text:
        return None
    ip = _parse_ip_sloppy(text)
    if ip is None and strict:
        raise _DecodeError(f"invalid IP address: {text}")
    return ip


def _address_from_json(value: Any) -> Address:
    data = _object(value, "Address")
    return Address(address_str=_get_str(data, "address"), gateway=_get_ip(data, "gateway", strict=True))


def _range_from_json(value: Any) -> RangeConfiguration:
    data = _object(value, "RangeConfiguration")
    return RangeConfiguration(
        range=_get_str(data, "range"),
        range_start=_get_ip(data, "range_start", strict=True),
        range_end=_get_ip(data, "range_end", strict=True),
        omit_ranges=_get_str_list(data, "exclude"),
    )


def _ipam_from_json(value: Any) -> IPAMConfig:
    data = _object(value, "IPAMConfig")
    kubernetes = _object(data.get("kubernetes") or {}, "KubernetesConfig")
    routes = _get_list(data, "routes")
    for route in routes:
        _object(route, "Route")
    return IPAMConfig(
        name=_get_str(data, "name"),
        type=_get_str(data, "type"),
        routes=[dict(route) for route in routes],
        datastore=_get_str(data, "datastore"),
        addresses=[_address_from_json(item) for item in _get_list(data, "addresses")],
        omit_ranges=_get_str_list(data, "exclude"),
        range=_get_str(data, "range"),
        range_start=_get_ip(data, "range_start", strict=False),
        range_end=_get_ip(data, "range_end", strict=False),
        ip_ranges=[_range_from_json(item) for item in _get_list(data, "ipranges")],
        node_slice_size=_get_str(data, "node_slice_size"),
        gateway_str=_get_str(data, "gateway"),
        kubernetes=KubernetesConfig(kubeconfig_path=_get_str(kubernetes, "kubeconfig")),
        configuration_path=_get_str(data, "configuration_path"),
        network_name=_get_str(data, "network_name"),
        overlapping_ranges=_get_bool(data, "enable_overlapping_ranges", True),
        sleep_for_race=_get_int(data, "sleep_for_race"),
        leader_lease_duration=_get_int(data, "leader_lease_duration"),
        leader_renew_deadline=_get_int(data, "leader_renew_deadline"),
        leader_retry_period=_get_int(data, "leader_retry_period"),
        log_file=_get_str(data, "log_file"),
        log_level=_get_str(data, "log_level"),
        reconciler_cron_expression=_get_str(data, "reconciler_cron_expression"),
    )


def _as_text(data: Union[bytes, str]) -> str:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data).decode("utf-8", errors="replace")
    return data


# --- merging --------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, int, float, list, dict, tuple)):
        return not value
    return False


def _merge(dst: Any, src: Any) -> None:
    """Fill empty fields of ``dst`` with the non-empty fields of ``src``."""
    for f in fields(dst):
        current = getattr(dst, f.name)
        incoming = getattr(src, f.name)
        if is_dataclass(current) and is_dataclass(incoming):
            _merge(current, incoming)
        elif _is_empty(current) and not _is_empty(incoming):
            setattr(dst, f.name, copy.deepcopy(incoming))


# --- CNI arguments --------------------------------------------------------


def _parse_bool_arg(text: str) -> bool:
    lowered = text.lower()
    if lowered in ("1", "true"):
        return True
    if lowered in ("0", "false"):
        return False
    raise ValueError(f"boolean unmarshal error: invalid input {text}")


def parse_cni_args(env_args: str) -> dict[str, str]:
    """Parse ``KEY=VALUE;KEY=VALUE`` CNI arguments into the known string fields."""
    values = {name: "" for name in _ENV_STRING_FIELDS}
    if not env_args:
        return values
    ignore_unknown = False
    unknown: list[str] = []
    for pair in env_args.split(";"):
        parts = pair.split("=")
        if len(parts) != 2:
            raise ConfigError(f"ARGS: invalid pair {json.dumps(pair)}")
        key, value = parts
        if key == "IgnoreUnknown":
            try:
                ignore_unknown = _parse_bool_arg(value)
            except ValueError as exc:
                raise ConfigError(f"ARGS: error parsing value of pair {json.dumps(pair)}: {exc}") from exc
        elif key in values:
            values[key] = value
        else:
            unknown.append(pair)
    if unknown and not ignore_unknown:
        listed = " ".join(json.dumps(item) for item in unknown)
        raise ConfigError(f"ARGS: unknown args [{listed}]")
    return values


# --- loading --------------------------------------------------------------


def _path_exists(path: str) -> bool:
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    except OSError:
        return True
    return True


def get_flat_ipam(is_control_loop: bool, ipam: Optional[IPAMConfig], *extra_config_paths: str) -> tuple[IPAMConfig, str]:
    """Read the first flat configuration file found; return it and its path.

    The IPAM's own ``configuration_path`` is tried first unless running in the
    control loop, then the default locations, then ``extra_config_paths``.
    """
    paths = [*DEFAULT_CONFIG_PATHS, *extra_config_paths]
    if not is_control_loop and ipam is not None and ipam.configuration_path:
        paths.insert(0, ipam.configuration_path)

    for path in paths:
        if not _path_exists(path):
            continue
        try:
            with open(path, "rb") as handle:
                content = handle.read()
        except OSError as exc:
            raise ConfigError(f"error opening flat configuration file @ {path} with: {exc}") from exc
        try:
            raw = json.loads(content)
            flat = IPAMConfig() if raw is None else _ipam_from_json(raw)
        except ValueError as exc:
            raise ConfigError(
                f"LoadIPAMConfig Flatfile ({path}) - JSON Parsing Error: {exc} / bytes: {_as_text(content)}"
            ) from exc
        return flat, path

    raise ConfigFileNotFoundError()


def _handle_env_args(ipam: IPAMConfig, args: Mapping[str, str]) -> tuple[int, int]:
    num_v4 = num_v6 = 0
    if args.get("IP"):
        for item in args["IP"].split(","):
            ipstr = item.strip()
            try:
                ip, subnet = _parse_cidr_sloppy(ipstr)
            except ValueError as exc:
                raise ConfigError(f"invalid CIDR {ipstr}: {exc}") from exc
            address = Address(address=ipaddress.ip_interface((ip, subnet.prefixlen)))
            if ip.version == 4:
                address.version = "4"
                num_v4 += 1
            else:
                address.version = "6"
                num_v6 += 1
            ipam.addresses.append(address)

    if args.get("GATEWAY"):
        for item in args["GATEWAY"].split(","):
            gateway = _parse_ip_sloppy(item.strip())
            if gateway is None:
                raise ConfigError(f"invalid gateway address: {item}")
            for address in ipam.addresses:
                network = address.address.network if address.address is not None else None
                if network is not None and gateway.version == network.version and gateway in network:
                    address.gateway = gateway
    return num_v4, num_v6


def _configure_static(ipam: IPAMConfig, cni_version: str, args: Mapping[str, str]) -> None:
    num_v4 = num_v6 = 0
    for address in ipam.addresses:
        try:
            ip, network = _parse_cidr_sloppy(address.address_str)
        except ValueError as exc:
            raise ConfigError(f"invalid CIDR in addresses {address.address_str}: {exc}") from exc
        address.address = ipaddress.ip_interface((ip, network.prefixlen))
        if ip.version == 4:
            address.version = "4"
            num_v4 += 1
        else:
            address.version = "6"
            num_v6 += 1

    env_v4, env_v6 = _handle_env_args(ipam, args)
    num_v4 += env_v4
    num_v6 += env_v6

    if (num_v4 > 1 or num_v6 > 1) and cni_version in ("", "0.1.0", "0.2.0"):
        raise ConfigError(f"CNI version {cni_version} does not support more than 1 address per family")


def _normalize_ranges(ipam: IPAMConfig) -> None:
    if ipam.range:
        legacy = RangeConfiguration(
            range=ipam.range,
            range_start=ipam.range_start,
            range_end=ipam.range_end,
            omit_ranges=ipam.omit_ranges,
        )
        ipam.ip_ranges = [legacy, *ipam.ip_ranges]

    for range_config in ipam.ip_ranges:
        parts = range_config.range.split("-", 1)
        if len(parts) == 2:
            start_text, cidr_text = parts
            first_ip = _parse_ip_sloppy(start_text)
            if first_ip is None:
                raise ConfigError(f"invalid range start IP: {start_text}")
            try:
                last_ip, network = _parse_cidr_sloppy(cidr_text)
            except ValueError as exc:
                raise ConfigError(
                    "invalid CIDR (do you have the 'range' parameter set for Whereabouts?) "
                    f"'{cidr_text}': {exc}"
                ) from exc
            if first_ip.version != network.version or first_ip not in network:
                raise ConfigError(f"invalid range start for CIDR {network}: {first_ip}")
            range_config.range = str(network)
            range_config.range_start = first_ip
            range_config.range_end = last_ip
        else:
            try:
                _, network = _parse_cidr_sloppy(range_config.range)
            except ValueError as exc:
                logs.debugf("invalid cidr error on range %s, within ranges %s", range_config.range, ipam.ip_ranges)
                raise ConfigError(f"invalid CIDR {range_config.range}: {exc}") from exc
            range_config.range = str(network)
            if range_config.range_start is None:
                range_config.range_start = network.network_address

    ipam.omit_ranges = []
    ipam.range = ""
    ipam.range_start = None
    ipam.range_end = None


def load_ipam_config(data: Union[bytes, str], env_args: str = "", *extra_config_paths: str) -> tuple[IPAMConfig, str]:
    """Build the IPAM configuration of a network; return it with the CNI version.

    Settings missing from ``data`` are filled from the first flat configuration
    file found, except the overlapping-ranges flag, which ``data`` decides.
    """
    try:
        raw = json.loads(data)
        net = _object(raw, "Net")
        name = _get_str(net, "name")
        cni_version = _get_str(net, "cniversion")
        ipam = None if net.get("ipam") is None else _ipam_from_json(net["ipam"])
    except ValueError as exc:
        raise ConfigError(f"LoadIPAMConfig - JSON Parsing Error: {exc} / bytes: {_as_text(data)}") from exc

    if ipam is None:
        raise ConfigError("IPAM config missing 'ipam' key")
    if ipam.type != RELEVANT_IPAM_TYPE:
        raise InvalidPluginError(ipam.type)

    try:
        args = parse_cni_args(env_args)
    except ConfigError as exc:
        raise ConfigError(f"LoadArgs - CNI Args Parsing Error: {exc}") from exc
    ipam.pod_name = args["K8S_POD_NAME"]
    ipam.pod_namespace = args["K8S_POD_NAMESPACE"]

    flat, found = get_flat_ipam(False, ipam, *extra_config_paths)

    overlapping = ipam.overlapping_ranges
    _merge(ipam, flat)
    ipam.overlapping_ranges = overlapping

    if ipam.log_file:
        logs.set_log_file(ipam.log_file)
    if ipam.log_level:
        logs.set_log_level(ipam.log_level)
    if found:
        logs.debugf("Used defaults from parsed flat file config @ %s", found)

    _normalize_ranges(ipam)

    if not ipam.kubernetes.kubeconfig_path:
        raise ConfigError(
            "you have not configured the storage engine (looks like you're using an invalid "
            "`kubernetes.kubeconfig` parameter in your config)"
        )

    if ipam.gateway_str:
        gateway = _parse_ip_sloppy(ipam.gateway_str)
        if gateway is None:
            raise ConfigError(f"couldn't parse gateway IP: {ipam.gateway_str}")
        ipam.gateway = gateway

    _configure_static(ipam, cni_version, args)

    if ipam.leader_lease_duration == 0:
        ipam.leader_lease_duration = DEFAULT_LEADER_LEASE_DURATION
    if ipam.leader_renew_deadline == 0:
        ipam.leader_renew_deadline = DEFAULT_LEADER_RENEW_DEADLINE
    if ipam.leader_retry_period == 0:
        ipam.leader_retry_period = DEFAULT_LEADER_RETRY_PERIOD

    ipam.name = name
    return ipam, cni_version


def load_ipam_configuration(data: Union[bytes, str], env_args: str = "", *extra_config_paths: str) -> IPAMConfig:
    """Load the IPAM configuration from a single plugin or a plugin list.

    For a list, the first plugin is used, with the list's CNI version.
    """
    try:
        raw = json.loads(data)
        plugin = _object(raw, "NetConf")
        plugin_type = _get_str(plugin, "type")
        cni_version = _get_str(plugin, "cniversion")
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    if plugin_type:
        return load_ipam_config(data, env_args, *extra_config_paths)[0]

    try:
        plugins = _get_list(plugin, "plugins")
        if not plugins:
            raise _DecodeError("config list has no plugins")
        _object(plugins[0], "Net")
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    first = {key: value for key, value in plugins[0].items() if key.lower() != "cniversion"}
    first["cniVersion"] = cni_version
    return load_ipam_config(json.dumps(first), env_args, *extra_config_paths)[0]