"""
Desired-state declaration of an Azure resource graph.

Every resource is an immutable spec naming its attributes. Attributes that
point at another resource hold a `Ref`, which is what turns the set of specs
into a dependency graph. Nothing here talks to Azure: `ResourceGraph` only
enumerates, orders and validates the declaration before it is handed to the
Pulumi engine by `modules.deployment`.
"""

import ipaddress
from typing import Any, Iterable, Iterator, Optional

import networkx as nx
from attr import dataclass, field, fields, has, validators

RESOURCE_GROUP = "resource_group"
VIRTUAL_NETWORK = "virtual_network"
SUBNET = "subnet"
PUBLIC_ADDRESS = "public_address"
NETWORK_INTERFACE = "network_interface"
SECURITY_GROUP = "security_group"
SECURITY_GROUP_ASSOCIATION = "security_group_association"
VIRTUAL_MACHINE = "virtual_machine"

ALLOCATION_METHODS = ("Dynamic", "Static")
PUBLIC_ADDRESS_SKUS = ("Basic", "Standard")
RULE_DIRECTIONS = ("Inbound", "Outbound")
RULE_ACCESS = ("Allow", "Deny")
RULE_PROTOCOLS = ("Tcp", "Udp", "Icmp", "*")
CACHING_MODES = ("None", "ReadOnly", "ReadWrite")
STORAGE_TIERS = ("Standard_LRS", "StandardSSD_LRS", "Premium_LRS")

MIN_RULE_PRIORITY = 100
MAX_RULE_PRIORITY = 4096

# Names Azure refuses as a VM administrator account.
RESERVED_ADMIN_USERNAMES = frozenset(
    {
        "1",
        "123",
        "a",
        "actuser",
        "adm",
        "admin",
        "admin1",
        "admin2",
        "administrator",
        "aspnet",
        "backup",
        "console",
        "guest",
        "owner",
        "root",
        "server",
        "sql",
        "support",
        "sys",
        "test",
        "test1",
        "test2",
        "test3",
        "user",
        "user1",
        "user2",
        "user3",
        "user4",
        "user5",
    }
)


class DeclarationError(ValueError):
    """
    Raised when a resource graph is structurally invalid. `problems` lists
    every issue found, not only the first one.
    """

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems: list[str] = list(problems)
        super().__init__("; ".join(self.problems))


class DuplicateResourceError(DeclarationError):
    pass


class DependencyCycleError(DeclarationError):
    pass


@dataclass(frozen=True)
class Ref:
    target: str


@dataclass(frozen=True, repr=False)
class Sensitive:
    """
    Placeholder for a value supplied at evaluation time (encrypted stack
    config or environment) instead of written into the declaration. With
    `generate=True` a random value is created on first apply and rotated
    whenever `version` changes.
    """

    key: str
    generate: bool = False
    version: str = "1"

    def __repr__(self) -> str:
        return f"Sensitive({self.key!r})"


@dataclass(frozen=True)
class ResourceNode:
    type: str
    name: str
    attributes: dict
    references: tuple


def _refers_to(*types: str):
    return field(
        validator=validators.instance_of(Ref), metadata={"ref_type": types}
    )


def _optional_ref(*types: str):
    return field(
        default=None,
        validator=validators.optional(validators.instance_of(Ref)),
        metadata={"ref_type": types},
    )


def _iter_refs(obj: Any, prefix: str = "") -> Iterator[tuple[str, Ref, tuple]]:
    for attribute in fields(type(obj)):
        expected = attribute.metadata.get("ref_type", ())
        yield from _iter_value_refs(
            getattr(obj, attribute.name), prefix + attribute.name, expected
        )


def _iter_value_refs(
    value: Any, path: str, expected: tuple
) -> Iterator[tuple[str, Ref, tuple]]:
    if isinstance(value, Ref):
        yield path, value, expected
    elif has(type(value)):
        yield from _iter_refs(value, f"{path}.")
    elif isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            yield from _iter_value_refs(item, f"{path}[{i}]", expected)


class ResourceSpec:
    """
    Base for every declared resource. Subclasses are frozen attrs classes
    with a `name` attribute and a `TYPE` tag.
    """

    TYPE = ""

    def references(self) -> list[str]:
        """Names of referenced resources, in attribute order, deduplicated."""
        targets: list[str] = []
        for _, ref, _ in _iter_refs(self):
            if ref.target not in targets:
                targets.append(ref.target)
        return targets

    def node(self) -> ResourceNode:
        attributes = {
            attribute.name: getattr(self, attribute.name)
            for attribute in fields(type(self))
            if attribute.name != "name"
        }
        return ResourceNode(
            type=self.TYPE,
            name=self.name,
            attributes=attributes,
            references=tuple(self.references()),
        )


@dataclass(frozen=True)
class ResourceGroup(ResourceSpec):
    TYPE = RESOURCE_GROUP

    name: str
    location: str
    tags: dict = field(factory=dict)


@dataclass(frozen=True)
class VirtualNetwork(ResourceSpec):
    TYPE = VIRTUAL_NETWORK

    name: str
    resource_group: Ref = _refers_to(RESOURCE_GROUP)
    address_space: list = field(factory=list)
    location: Optional[str] = None
    tags: dict = field(factory=dict)


@dataclass(frozen=True)
class Subnet(ResourceSpec):
    TYPE = SUBNET

    name: str
    resource_group: Ref = _refers_to(RESOURCE_GROUP)
    virtual_network: Ref = _refers_to(VIRTUAL_NETWORK)
    address_prefix: str = ""


@dataclass(frozen=True)
class PublicAddress(ResourceSpec):
    """
    A public IP. Dynamic addresses stay unassigned until the resource they
    are attached to is running.
    """

    TYPE = PUBLIC_ADDRESS

    name: str
    resource_group: Ref = _refers_to(RESOURCE_GROUP)
    allocation: str = field(
        default="Dynamic", validator=validators.in_(ALLOCATION_METHODS)
    )
    sku: str = field(
        default="Basic", validator=validators.in_(PUBLIC_ADDRESS_SKUS)
    )
    location: Optional[str] = None
    tags: dict = field(factory=dict)


@dataclass(frozen=True)
class IPConfiguration:
    name: str
    subnet: Ref = _refers_to(SUBNET)
    allocation: str = field(
        default="Dynamic", validator=validators.in_(ALLOCATION_METHODS)
    )
    private_ip_address: Optional[str] = None
    public_address: Optional[Ref] = _optional_ref(PUBLIC_ADDRESS)


@dataclass(frozen=True)
class NetworkInterface(ResourceSpec):
    TYPE = NETWORK_INTERFACE

    name: str
    resource_group: Ref = _refers_to(RESOURCE_GROUP)
    ip_configurations: list = field(factory=list)
    location: Optional[str] = None
    tags: dict = field(factory=dict)


@dataclass(frozen=True)
class SecurityRule:
    name: str
    priority: int
    destination_port_range: str
    direction: str = field(
        default="Inbound", validator=validators.in_(RULE_DIRECTIONS)
    )
    access: str = field(default="Allow", validator=validators.in_(RULE_ACCESS))
    protocol: str = field(default="Tcp", validator=validators.in_(RULE_PROTOCOLS))
    source_port_range: str = "*"
    source_address_prefix: str = "*"
    destination_address_prefix: str = "*"


@dataclass(frozen=True)
class SecurityGroup(ResourceSpec):
    TYPE = SECURITY_GROUP

    name: str
    resource_group: Ref = _refers_to(RESOURCE_GROUP)
    rules: list = field(factory=list)
    location: Optional[str] = None
    tags: dict = field(factory=dict)


@dataclass(frozen=True)
class SecurityGroupAssociation(ResourceSpec):
    """
    Applies a security group's rules to every member of a subnet, or to a
    single network interface.
    """

    TYPE = SECURITY_GROUP_ASSOCIATION

    name: str
    security_group: Ref = _refers_to(SECURITY_GROUP)
    target: Ref = _refers_to(SUBNET, NETWORK_INTERFACE)


@dataclass(frozen=True)
class OSDisk:
    caching: str = field(
        default="ReadWrite", validator=validators.in_(CACHING_MODES)
    )
    storage_account_type: str = field(
        default="Standard_LRS", validator=validators.in_(STORAGE_TIERS)
    )
    disk_size_gb: Optional[int] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class ImageReference:
    publisher: str
    offer: str
    sku: str
    version: str = "latest"


@dataclass(frozen=True)
class VirtualMachine(ResourceSpec):
    TYPE = VIRTUAL_MACHINE

    name: str
    resource_group: Ref = _refers_to(RESOURCE_GROUP)
    size: str = ""
    admin_username: str = ""
    admin_password: Any = None
    network_interfaces: list = field(
        factory=list,
        validator=validators.deep_iterable(validators.instance_of(Ref)),
        metadata={"ref_type": (NETWORK_INTERFACE,)},
    )
    image: Optional[ImageReference] = None
    os_disk: OSDisk = field(factory=OSDisk)
    computer_name: Optional[str] = None
    location: Optional[str] = None
    tags: dict = field(factory=dict)


def _parse_network(value: str, owner: str, problems: list[str]):
    try:
        return ipaddress.ip_network(value)
    except ValueError as e:
        problems.append(f"{owner}: invalid CIDR '{value}' ({e})")
        return None


class ResourceGraph:
    """
    Ordered collection of resource specs. Declaration order is kept and used
    to break ties when ordering independent resources, so the same
    declaration always yields the same order.
    """

    def __init__(self, specs: Iterable[ResourceSpec] = ()):
        self._specs: dict[str, ResourceSpec] = {}
        for spec in specs:
            self.add(spec)

    def add(self, spec: ResourceSpec) -> Ref:
        if spec.name in self._specs:
            raise DuplicateResourceError(
                f"resource '{spec.name}' is declared more than once"
            )
        self._specs[spec.name] = spec
        return Ref(spec.name)

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self.nodes())

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def spec(self, name: str) -> ResourceSpec:
        return self._specs[name]

    def node(self, name: str) -> ResourceNode:
        return self._specs[name].node()

    def nodes(self) -> list[ResourceNode]:
        return [spec.node() for spec in self._specs.values()]

    def specs_of_type(self, type_: str) -> list:
        return [spec for spec in self._specs.values() if spec.TYPE == type_]

    def nodes_of_type(self, type_: str) -> list[ResourceNode]:
        return [spec.node() for spec in self.specs_of_type(type_)]

    def referrers(self, name: str, type_: Optional[str] = None) -> list:
        """Specs holding a reference to `name`, optionally of one type."""
        return [
            spec
            for spec in self._specs.values()
            if name in spec.references() and type_ in (None, spec.TYPE)
        ]

    def dependency_graph(self) -> nx.DiGraph:
        """
        Directed graph with an edge dependency -> dependent for every
        reference whose target is declared. Dangling references are left out
        here and reported by `validate`.
        """
        graph = nx.DiGraph()
        for name, spec in self._specs.items():
            graph.add_node(name, type=spec.TYPE)
        for name, spec in self._specs.items():
            for target in spec.references():
                if target in self._specs:
                    graph.add_edge(target, name)
        return graph

    def topological_order(
        self, extra_edges: Iterable[tuple[str, str]] = ()
    ) -> list[ResourceNode]:
        """
        Nodes ordered so that every dependency comes before its dependents.
        `extra_edges` adds (before, after) constraints that are not expressed
        as references.
        """
        graph = self.dependency_graph()
        graph.add_edges_from(extra_edges)
        index = {name: i for i, name in enumerate(self._specs)}
        try:
            order = list(
                nx.lexicographical_topological_sort(
                    graph, key=lambda name: index.get(name, len(index))
                )
            )
        except nx.NetworkXUnfeasible:
            raise DependencyCycleError(
                f"dependency cycle: {self._describe_cycle(graph)}"
            )
        return [self._specs[name].node() for name in order if name in index]

    def effective_location(self, name: str) -> Optional[str]:
        """
        The resource's own region, or the one of the resource group it
        belongs to.
        """
        spec = self._specs[name]
        location = getattr(spec, "location", None)
        if location:
            return location
        resource_group = getattr(spec, "resource_group", None)
        if resource_group is not None and resource_group.target in self._specs:
            return getattr(self._specs[resource_group.target], "location", None)
        return None

    def validate(self) -> None:
        problems = self.problems()
        if problems:
            raise DeclarationError(problems)

    def problems(self) -> list[str]:
        return (
            self._reference_problems()
            + self._cycle_problems()
            + self._address_problems()
            + self._security_rule_problems()
            + self._credential_problems()
            + self._attachment_problems()
        )

    @staticmethod
    def _describe_cycle(graph: nx.DiGraph) -> str:
        cycle = nx.find_cycle(graph)
        return " -> ".join([edge[0] for edge in cycle] + [cycle[-1][1]])

    def _reference_problems(self) -> list[str]:
        problems = []
        for name, spec in self._specs.items():
            for path, ref, expected in _iter_refs(spec):
                target = self._specs.get(ref.target)
                if target is None:
                    problems.append(
                        f"{spec.TYPE} '{name}' references unknown resource "
                        f"'{ref.target}' ({path})"
                    )
                elif expected and target.TYPE not in expected:
                    problems.append(
                        f"{spec.TYPE} '{name}' expects {' or '.join(expected)} "
                        f"for {path}, got {target.TYPE} '{ref.target}'"
                    )
        return problems

    def _cycle_problems(self) -> list[str]:
        graph = self.dependency_graph()
        if nx.is_directed_acyclic_graph(graph):
            return []
        return [f"dependency cycle: {self._describe_cycle(graph)}"]

    def _address_problems(self) -> list[str]:
        problems: list[str] = []

        address_spaces = {}
        for vnet in self.specs_of_type(VIRTUAL_NETWORK):
            if not vnet.address_space:
                problems.append(
                    f"virtual_network '{vnet.name}' has an empty address space"
                )
            address_spaces[vnet.name] = [
                network
                for network in (
                    _parse_network(prefix, f"virtual_network '{vnet.name}'", problems)
                    for prefix in vnet.address_space
                )
                if network is not None
            ]

        subnet_prefixes = {}
        siblings: dict[str, list[str]] = {}
        for subnet in self.specs_of_type(SUBNET):
            prefix = _parse_network(
                subnet.address_prefix, f"subnet '{subnet.name}'", problems
            )
            if prefix is None:
                continue
            subnet_prefixes[subnet.name] = prefix
            parent = subnet.virtual_network.target
            if parent not in address_spaces:
                continue
            siblings.setdefault(parent, []).append(subnet.name)
            if address_spaces[parent] and not any(
                prefix.version == network.version and prefix.subnet_of(network)
                for network in address_spaces[parent]
            ):
                problems.append(
                    f"subnet '{subnet.name}' prefix {prefix} is outside the "
                    f"address space of virtual_network '{parent}'"
                )

        for parent, names in siblings.items():
            for i, first in enumerate(names):
                for second in names[i + 1 :]:
                    if subnet_prefixes[first].overlaps(subnet_prefixes[second]):
                        problems.append(
                            f"subnets '{first}' and '{second}' of "
                            f"virtual_network '{parent}' overlap"
                        )

        for nic in self.specs_of_type(NETWORK_INTERFACE):
            for ip_config in nic.ip_configurations:
                owner = f"network_interface '{nic.name}' ip configuration '{ip_config.name}'"
                if ip_config.allocation != "Static":
                    continue
                if not ip_config.private_ip_address:
                    problems.append(f"{owner}: static allocation needs a private IP")
                    continue
                try:
                    address = ipaddress.ip_address(ip_config.private_ip_address)
                except ValueError as e:
                    problems.append(f"{owner}: {e}")
                    continue
                prefix = subnet_prefixes.get(ip_config.subnet.target)
                if prefix is not None and address not in prefix:
                    problems.append(
                        f"{owner}: {address} is outside subnet "
                        f"'{ip_config.subnet.target}' ({prefix})"
                    )

        for address in self.specs_of_type(PUBLIC_ADDRESS):
            if address.sku == "Standard" and address.allocation != "Static":
                problems.append(
                    f"public_address '{address.name}': Standard SKU requires "
                    "Static allocation"
                )
        return problems

    def _security_rule_problems(self) -> list[str]:
        problems = []
        for group in self.specs_of_type(SECURITY_GROUP):
            priorities: dict[int, str] = {}
            names: set[str] = set()
            for rule in group.rules:
                owner = f"security_group '{group.name}' rule '{rule.name}'"
                if rule.name in names:
                    problems.append(f"{owner}: duplicate rule name")
                names.add(rule.name)
                if not MIN_RULE_PRIORITY <= rule.priority <= MAX_RULE_PRIORITY:
                    problems.append(
                        f"{owner}: priority {rule.priority} outside "
                        f"{MIN_RULE_PRIORITY}..{MAX_RULE_PRIORITY}"
                    )
                if rule.priority in priorities:
                    problems.append(
                        f"{owner}: priority {rule.priority} already used by "
                        f"rule '{priorities[rule.priority]}'"
                    )
                else:
                    priorities[rule.priority] = rule.name
        return problems

    def _credential_problems(self) -> list[str]:
        problems = []
        for vm in self.specs_of_type(VIRTUAL_MACHINE):
            if not isinstance(vm.admin_password, Sensitive):
                problems.append(
                    f"virtual_machine '{vm.name}': admin_password must be a "
                    "sensitive input, not a literal value"
                )
            if not vm.admin_username:
                problems.append(f"virtual_machine '{vm.name}': admin_username is empty")
            elif vm.admin_username.lower() in RESERVED_ADMIN_USERNAMES:
                problems.append(
                    f"virtual_machine '{vm.name}': admin_username "
                    f"'{vm.admin_username}' is reserved by Azure"
                )
        return problems

    def _attachment_problems(self) -> list[str]:
        problems = []
        for nic in self.specs_of_type(NETWORK_INTERFACE):
            if not nic.ip_configurations:
                problems.append(
                    f"network_interface '{nic.name}' has no ip configuration"
                )

        attached_to: dict[str, str] = {}
        for vm in self.specs_of_type(VIRTUAL_MACHINE):
            if not vm.network_interfaces:
                problems.append(
                    f"virtual_machine '{vm.name}' has no network interface"
                )
            if vm.image is None:
                problems.append(f"virtual_machine '{vm.name}' has no source image")
            for ref in vm.network_interfaces:
                if ref.target in attached_to:
                    problems.append(
                        f"network_interface '{ref.target}' is attached to both "
                        f"'{attached_to[ref.target]}' and '{vm.name}'"
                    )
                else:
                    attached_to[ref.target] = vm.name

        secured: dict[str, str] = {}
        for association in self.specs_of_type(SECURITY_GROUP_ASSOCIATION):
            target = association.target.target
            if target in secured:
                problems.append(
                    f"'{target}' is associated with more than one security "
                    f"group ('{secured[target]}', '{association.security_group.target}')"
                )
            else:
                secured[target] = association.security_group.target
        return problems
