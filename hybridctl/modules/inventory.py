"""Host registry reader for the Ansible INI inventory.

The registry is re-read on every call. Operators edit it mid-run (for
example to swap LAN addresses for mesh addresses), so nothing is cached.
"""
import getpass
import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from hybridctl.errors import ConfigurationError, GroupNotFound

logger = logging.getLogger("hybridctl.inventory")

ADDRESS_KEYS = ("ansible_host", "addr")
LOGIN_KEYS = ("ansible_user", "user")

_SECTION_RE = re.compile(r"^\[([^\]]+)\]\s*$")


@dataclass(frozen=True)
class HostRecord:
    """A single machine from the registry."""
    name: str
    address: str
    user: str
    group: str
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class HostGroup:
    name: str
    hosts: Tuple[HostRecord, ...]

    @property
    def first(self) -> HostRecord:
        return self.hosts[0]


def _is_skippable(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#") or stripped.startswith(";")


def _tokens(line: str) -> List[str]:
    """Whitespace-separated fields; quoted values such as node_labels="a b" stay whole."""
    try:
        return shlex.split(line, comments=False)
    except ValueError as e:
        raise ConfigurationError(
            f"Cannot parse inventory line: {line.strip()} ({e})",
            remediation="Check for an unbalanced quote on that line",
        )


def _parse_pairs(tokens: List[str]) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for token in tokens:
        if "=" not in token:
            continue
        key, _, value = token.partition("=")
        pairs[key] = value.strip("'\"")
    return pairs


def _pick(attrs: Dict[str, str], keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        if attrs.get(key):
            return attrs[key]
    return None


class HostRegistry:
    """Reads host groups from an inventory file.

    Args:
        path: Inventory file path
        template: Template the operator should copy from when the file is missing
    """

    def __init__(self, path: Union[str, Path], template: Optional[Union[str, Path]] = None):
        self.path = Path(path)
        self.template = Path(template) if template else self.path.with_name(self.path.name + ".example")

    def _lines(self) -> List[str]:
        if not self.path.exists():
            raise ConfigurationError(
                f"Host registry not found: {self.path}",
                remediation=f"cp {self.template} {self.path} and fill in your hosts",
            )
        return self.path.read_text().splitlines()

    def _sections(self) -> Iterator[Tuple[str, List[str]]]:
        """Yield (section name, raw lines) pairs in file order."""
        current: Optional[str] = None
        body: List[str] = []
        for line in self._lines():
            match = _SECTION_RE.match(line.strip())
            if match:
                if current is not None:
                    yield current, body
                current, body = match.group(1).strip(), []
            elif current is not None:
                body.append(line)
        if current is not None:
            yield current, body

    def _default_user(self) -> Optional[str]:
        """First ansible_user found anywhere in the file."""
        for line in self._lines():
            if _is_skippable(line) or _SECTION_RE.match(line.strip()):
                continue
            value = _pick(_parse_pairs(_tokens(line)), LOGIN_KEYS)
            if value:
                return value
        return None

    def groups(self) -> List[str]:
        """Names of host groups, excluding :vars and :children sections."""
        return [name for name, _ in self._sections() if ":" not in name]

    def _records(self, group: str, body: List[str]) -> List[HostRecord]:
        records = []
        fallback_user: Optional[str] = None
        for line in body:
            if _is_skippable(line):
                continue
            tokens = _tokens(line)
            name, attrs = tokens[0], _parse_pairs(tokens[1:])

            address = _pick(attrs, ADDRESS_KEYS)
            if not address:
                logger.info(f"No ansible_host for '{name}' in [{group}]; using the host name as its address")
                address = name

            user = _pick(attrs, LOGIN_KEYS)
            if not user:
                if fallback_user is None:
                    fallback_user = self._default_user() or ""
                    if not fallback_user:
                        fallback_user = getpass.getuser()
                        logger.warning(
                            f"Could not determine SSH user from {self.path}; "
                            f"falling back to current user: {fallback_user}"
                        )
                    else:
                        logger.info(f"Using inventory-wide ansible_user={fallback_user} for [{group}]")
                user = fallback_user

            role_attrs = {
                k: v for k, v in attrs.items()
                if k not in ADDRESS_KEYS and k not in LOGIN_KEYS
            }
            records.append(HostRecord(name=name, address=address, user=user, group=group, attributes=role_attrs))
        return records

    def group(self, name: str) -> HostGroup:
        for section, body in self._sections():
            if section == name:
                records = self._records(name, body)
                if records:
                    return HostGroup(name=name, hosts=tuple(records))
                break
        raise GroupNotFound(name, str(self.path))

    def resolve(self, group: str) -> List[HostRecord]:
        """Every host in ``group`` in file order."""
        return list(self.group(group).hosts)

    def first(self, group: str) -> HostRecord:
        """The authoritative single target of ``group`` (its first host line)."""
        host = self.group(group).first
        logger.debug(f"Resolved [{group}] to {host.name} ({host.user}@{host.address})")
        return host

    def all_hosts(self) -> List[HostRecord]:
        """Every host in every group, de-duplicated by name, in file order."""
        seen = set()
        hosts = []
        for name in self.groups():
            try:
                records = self.resolve(name)
            except GroupNotFound:
                continue
            for record in records:
                if record.name not in seen:
                    seen.add(record.name)
                    hosts.append(record)
        return hosts
