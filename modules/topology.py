import re
from typing import Optional

from attr import dataclass, field

from modules.declaration import (
    ImageReference,
    IPConfiguration,
    NetworkInterface,
    OSDisk,
    PublicAddress,
    ResourceGraph,
    ResourceGroup,
    SecurityGroup,
    SecurityGroupAssociation,
    SecurityRule,
    Sensitive,
    Subnet,
    VirtualMachine,
    VirtualNetwork,
)

ADMIN_PASSWORD_KEY = "admin_password"

# Windows computer names are NetBIOS names.
MAX_WINDOWS_COMPUTER_NAME = 15


@dataclass
class VMSpecs:
    admin_username: str
    server_name: str
    size: str
    publisher: str
    offer: str
    sku: str
    os_type: str = "windows"
    version: str = "latest"
    admin_password_version: str = "1"
    disk_size_gb: Optional[int] = None
    caching: str = "ReadWrite"
    storage_account_type: str = "Standard_LRS"

    def __attrs_post_init__(self):
        if not re.match(r"^[A-Za-z0-9\-]+$", self.server_name):
            raise ValueError(
                f"server_name '{self.server_name}' contains invalid characters. Only letters, numbers, and hyphens are allowed."  # noqa: E501
            )
        if self.os_type.lower() not in ("windows", "linux"):
            raise ValueError(
                f"Unsupported OS type for VM {self.server_name}: {self.os_type}"
            )
        if (
            self.os_type.lower() == "windows"
            and len(self.server_name) > MAX_WINDOWS_COMPUTER_NAME
        ):
            raise ValueError(
                f"server_name '{self.server_name}' is longer than {MAX_WINDOWS_COMPUTER_NAME} characters, which Windows does not allow as a computer name."  # noqa: E501
            )


@dataclass
class TopologySettings:
    location: str
    resource_group_name: str
    vnet_address_prefixes: list
    subnet_address_prefix: str
    vm_spec: VMSpecs
    tags: dict = field(factory=dict)
    remote_access_source: str = "*"
    public_ip_allocation: str = "Dynamic"
    generate_admin_password: bool = False


def remote_access_rule(vm_spec: VMSpecs, source_address_prefix: str) -> SecurityRule:
    """
    RDP for Windows machines, SSH for Linux ones.
    """

    if vm_spec.os_type.lower() == "windows":
        return SecurityRule(
            name="AllowRDP",
            priority=1000,
            destination_port_range="3389",
            source_address_prefix=source_address_prefix,
        )
    return SecurityRule(
        name="AllowSSH",
        priority=1001,
        destination_port_range="22",
        source_address_prefix=source_address_prefix,
    )


def declare_vm_topology(settings: TopologySettings) -> ResourceGraph:
    """
    Declares a resource group holding one virtual network and subnet, a
    security group admitting remote sessions on the subnet, and a VM reached
    through a public IP.
    """

    graph = ResourceGraph()
    prefix = settings.resource_group_name
    vm_spec = settings.vm_spec
    tags = settings.tags

    resource_group = graph.add(
        ResourceGroup(name=prefix, location=settings.location, tags=tags)
    )
    vnet = graph.add(
        VirtualNetwork(
            name=f"{prefix}-vnet",
            resource_group=resource_group,
            address_space=list(settings.vnet_address_prefixes),
            tags=tags,
        )
    )
    subnet = graph.add(
        Subnet(
            name=f"{prefix}-subnet",
            resource_group=resource_group,
            virtual_network=vnet,
            address_prefix=settings.subnet_address_prefix,
        )
    )
    nsg = graph.add(
        SecurityGroup(
            name=f"{prefix}-nsg",
            resource_group=resource_group,
            rules=[remote_access_rule(vm_spec, settings.remote_access_source)],
            tags=tags,
        )
    )
    graph.add(
        SecurityGroupAssociation(
            name=f"{prefix}-nsg-subnet",
            security_group=nsg,
            target=subnet,
        )
    )

    public_ip = graph.add(
        PublicAddress(
            name=f"{vm_spec.server_name}-public-ip",
            resource_group=resource_group,
            allocation=settings.public_ip_allocation,
            sku="Standard" if settings.public_ip_allocation == "Static" else "Basic",
            tags=tags,
        )
    )
    nic = graph.add(
        NetworkInterface(
            name=f"{vm_spec.server_name}-nic",
            resource_group=resource_group,
            ip_configurations=[
                IPConfiguration(
                    name=f"{vm_spec.server_name}-ipconfig",
                    subnet=subnet,
                    public_address=public_ip,
                )
            ],
            tags=tags,
        )
    )
    graph.add(
        VirtualMachine(
            name=f"{vm_spec.server_name}-vm",
            resource_group=resource_group,
            size=vm_spec.size,
            admin_username=vm_spec.admin_username,
            admin_password=Sensitive(
                ADMIN_PASSWORD_KEY,
                generate=settings.generate_admin_password,
                version=vm_spec.admin_password_version,
            ),
            network_interfaces=[nic],
            image=ImageReference(
                publisher=vm_spec.publisher,
                offer=vm_spec.offer,
                sku=vm_spec.sku,
                version=vm_spec.version,
            ),
            os_disk=OSDisk(
                caching=vm_spec.caching,
                storage_account_type=vm_spec.storage_account_type,
                disk_size_gb=vm_spec.disk_size_gb,
                name=f"{vm_spec.server_name}-os-disk",
            ),
            computer_name=vm_spec.server_name,
            tags=tags,
        )
    )
    return graph
