from typing import TYPE_CHECKING, Optional

from pulumi import Output
from pulumi_azure_native import compute as az_compute, network as az_network

from modules.declaration import VirtualMachine

if TYPE_CHECKING:
    from modules.deployment import ResourceGraphDeployment


def build_virtual_machine(
    spec: VirtualMachine, deployment: "ResourceGraphDeployment"
) -> az_compute.VirtualMachine:
    """
    Create a Virtual Machine from its declaration. The first network
    interface is the primary one.
    """

    return az_compute.VirtualMachine(
        spec.name,
        vm_name=spec.name,
        resource_group_name=deployment.resolve(spec.resource_group, "name"),
        location=deployment.location(spec.name),
        network_profile=az_compute.NetworkProfileArgs(
            network_interfaces=[
                az_compute.NetworkInterfaceReferenceArgs(
                    id=deployment.resolve(nic),
                    primary=(i == 0),
                )
                for i, nic in enumerate(spec.network_interfaces)
            ]
        ),
        hardware_profile=az_compute.HardwareProfileArgs(
            vm_size=spec.size,
        ),
        os_profile=az_compute.OSProfileArgs(
            computer_name=spec.computer_name or spec.name,
            admin_username=spec.admin_username,
            admin_password=deployment.sensitive(spec.admin_password, spec.name),
        ),
        storage_profile=az_compute.StorageProfileArgs(
            os_disk=az_compute.OSDiskArgs(
                name=spec.os_disk.name or f"{spec.name}-os-disk",
                caching=spec.os_disk.caching,
                create_option=az_compute.DiskCreateOption.FROM_IMAGE,
                disk_size_gb=spec.os_disk.disk_size_gb,
                managed_disk=az_compute.ManagedDiskParametersArgs(
                    storage_account_type=spec.os_disk.storage_account_type,
                ),
            ),
            image_reference=az_compute.ImageReferenceArgs(
                publisher=spec.image.publisher,
                offer=spec.image.offer,
                sku=spec.image.sku,
                version=spec.image.version,
            ),
        ),
        tags=spec.tags or None,
        opts=deployment.opts,
    )


def lookup_public_address(
    spec: VirtualMachine, deployment: "ResourceGraphDeployment"
) -> Optional[Output[str]]:
    """
    Public IP of the VM's first network interface that has one, or None.

    A dynamic address is only assigned once the VM runs, so the address is
    read back from Azure after the VM exists rather than taken from the
    PublicIPAddress resource's own outputs.
    """

    for nic_ref in spec.network_interfaces:
        nic = deployment.graph.spec(nic_ref.target)
        for ip_config in nic.ip_configurations:
            if ip_config.public_address is None:
                continue
            public_ip_name = ip_config.public_address.target
            vm = deployment.resources[spec.name]
            address = az_network.get_public_ip_address_output(
                resource_group_name=deployment.resolve(spec.resource_group, "name"),
                public_ip_address_name=vm.id.apply(lambda _: public_ip_name),
            )
            return address.apply(lambda result: result.ip_address or "")
    return None
