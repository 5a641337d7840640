import pytest

from conftest import make_settings, make_vm_spec
from modules.declaration import (
    NETWORK_INTERFACE,
    PUBLIC_ADDRESS,
    RESOURCE_GROUP,
    SECURITY_GROUP,
    SECURITY_GROUP_ASSOCIATION,
    SUBNET,
    VIRTUAL_MACHINE,
    VIRTUAL_NETWORK,
    DeclarationError,
    Sensitive,
)
from modules.topology import ADMIN_PASSWORD_KEY, declare_vm_topology, remote_access_rule


def test_declares_the_full_topology(graph):
    assert [(node.type, node.name) for node in graph.topological_order()] == [
        (RESOURCE_GROUP, "eastus-windows-vm-rg"),
        (VIRTUAL_NETWORK, "eastus-windows-vm-rg-vnet"),
        (SUBNET, "eastus-windows-vm-rg-subnet"),
        (SECURITY_GROUP, "eastus-windows-vm-rg-nsg"),
        (SECURITY_GROUP_ASSOCIATION, "eastus-windows-vm-rg-nsg-subnet"),
        (PUBLIC_ADDRESS, "win-vm-01-public-ip"),
        (NETWORK_INTERFACE, "win-vm-01-nic"),
        (VIRTUAL_MACHINE, "win-vm-01-vm"),
    ]


def test_declared_topology_is_valid(graph):
    graph.validate()


def test_every_resource_inherits_the_region(graph):
    for node in graph:
        if node.type != SECURITY_GROUP_ASSOCIATION:
            assert graph.effective_location(node.name) == "eastus"


def test_rdp_is_open_for_windows(graph):
    (rule,) = graph.spec("eastus-windows-vm-rg-nsg").rules
    assert rule.name == "AllowRDP"
    assert rule.destination_port_range == "3389"
    assert rule.direction == "Inbound"
    assert rule.access == "Allow"
    assert rule.source_address_prefix == "*"


def test_rdp_source_can_be_restricted():
    graph = declare_vm_topology(make_settings(remote_access_source="198.51.100.7/32"))
    (rule,) = graph.spec("eastus-windows-vm-rg-nsg").rules
    assert rule.source_address_prefix == "198.51.100.7/32"


def test_ssh_is_open_for_linux():
    rule = remote_access_rule(make_vm_spec(os_type="Linux"), "*")
    assert (rule.name, rule.destination_port_range, rule.priority) == (
        "AllowSSH",
        "22",
        1001,
    )


def test_admin_password_is_a_sensitive_input(graph):
    vm = graph.spec("win-vm-01-vm")
    assert vm.admin_password == Sensitive(ADMIN_PASSWORD_KEY, generate=False, version="1")
    assert "Sensitive('admin_password')" in repr(vm)


def test_password_generation_follows_settings():
    graph = declare_vm_topology(
        make_settings(
            generate_admin_password=True,
            vm_spec=make_vm_spec(admin_password_version="7"),
        )
    )
    password = graph.spec("win-vm-01-vm").admin_password
    assert password.generate is True
    assert password.version == "7"


def test_public_ip_is_dynamic_by_default(graph):
    public_ip = graph.spec("win-vm-01-public-ip")
    assert (public_ip.allocation, public_ip.sku) == ("Dynamic", "Basic")


def test_static_public_ip_uses_standard_sku():
    graph = declare_vm_topology(make_settings(public_ip_allocation="Static"))
    public_ip = graph.spec("win-vm-01-public-ip")
    assert (public_ip.allocation, public_ip.sku) == ("Static", "Standard")
    graph.validate()


def test_vm_image_and_disk(graph):
    vm = graph.spec("win-vm-01-vm")
    assert vm.image.publisher == "MicrosoftWindowsServer"
    assert vm.image.version == "latest"
    assert vm.os_disk.caching == "ReadWrite"
    assert vm.os_disk.storage_account_type == "Standard_LRS"
    assert vm.computer_name == "win-vm-01"


def test_subnet_outside_vnet_fails_validation():
    graph = declare_vm_topology(make_settings(subnet_address_prefix="10.1.0.0/24"))
    with pytest.raises(DeclarationError):
        graph.validate()


@pytest.mark.parametrize(
    "overrides",
    [
        {"server_name": "win_vm_01"},
        {"server_name": "a-windows-name-too-long"},
        {"os_type": "plan9"},
    ],
)
def test_invalid_vm_specs_are_rejected(overrides):
    with pytest.raises(ValueError):
        make_vm_spec(**overrides)


def test_long_server_name_is_fine_for_linux():
    spec = make_vm_spec(server_name="a-linux-name-that-is-long", os_type="linux")
    assert spec.server_name == "a-linux-name-that-is-long"
