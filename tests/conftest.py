import pytest

from modules.topology import TopologySettings, VMSpecs, declare_vm_topology


def make_vm_spec(**overrides) -> VMSpecs:
    values = {
        "admin_username": "azureuser",
        "server_name": "win-vm-01",
        "size": "Standard_DS1_v2",
        "publisher": "MicrosoftWindowsServer",
        "offer": "WindowsServer",
        "sku": "2019-Datacenter",
    }
    values.update(overrides)
    return VMSpecs(**values)


def make_settings(**overrides) -> TopologySettings:
    values = {
        "location": "eastus",
        "resource_group_name": "eastus-windows-vm-rg",
        "vnet_address_prefixes": ["10.0.0.0/16"],
        "subnet_address_prefix": "10.0.0.0/24",
        "vm_spec": make_vm_spec(),
        "tags": {"environment": "test"},
    }
    values.update(overrides)
    return TopologySettings(**values)


@pytest.fixture
def settings() -> TopologySettings:
    return make_settings()


@pytest.fixture
def graph(settings):
    return declare_vm_topology(settings)
