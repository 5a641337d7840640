from typing import TYPE_CHECKING

from pulumi import log
from pulumi_azure_native import network as az_network, resources as az_resources

from modules.declaration import (
    NetworkInterface,
    PublicAddress,
    ResourceGroup,
    SecurityGroup,
    SecurityRule,
    Subnet,
    VirtualNetwork,
)

if TYPE_CHECKING:
    from modules.deployment import ResourceGraphDeployment


def build_resource_group(
    spec: ResourceGroup, deployment: "ResourceGraphDeployment"
) -> az_resources.ResourceGroup:
    return az_resources.ResourceGroup(
        spec.name,
        resource_group_name=spec.name,
        location=spec.location,
        tags=spec.tags or None,
        opts=deployment.opts,
    )


def build_virtual_network(
    spec: VirtualNetwork, deployment: "ResourceGraphDeployment"
) -> az_network.VirtualNetwork:
    return az_network.VirtualNetwork(
        spec.name,
        virtual_network_name=spec.name,
        resource_group_name=deployment.resolve(spec.resource_group, "name"),
        address_space=az_network.AddressSpaceArgs(
            address_prefixes=list(spec.address_space),
        ),
        location=deployment.location(spec.name),
        tags=spec.tags or None,
        opts=deployment.opts,
    )


def build_subnet(
    spec: Subnet, deployment: "ResourceGraphDeployment"
) -> az_network.Subnet:
    security_group_id = deployment.associated_security_group(spec.name)
    return az_network.Subnet(
        spec.name,
        subnet_name=spec.name,
        resource_group_name=deployment.resolve(spec.resource_group, "name"),
        virtual_network_name=deployment.resolve(spec.virtual_network, "name"),
        address_prefix=spec.address_prefix,
        network_security_group=(
            az_network.NetworkSecurityGroupArgs(id=security_group_id)
            if security_group_id is not None
            else None
        ),
        opts=deployment.opts,
    )


def security_rule_args(
    group_name: str, rule: SecurityRule
) -> az_network.SecurityRuleArgs:
    if (
        rule.direction == "Inbound"
        and rule.access == "Allow"
        and rule.source_address_prefix in ("*", "Internet", "0.0.0.0/0")
    ):
        log.warn(
            f"Security group {group_name}: rule {rule.name} allows port "
            f"{rule.destination_port_range} from any source"
        )
    return az_network.SecurityRuleArgs(
        name=rule.name,
        priority=rule.priority,
        direction=rule.direction,
        access=rule.access,
        protocol=rule.protocol,
        source_port_range=rule.source_port_range,
        destination_port_range=rule.destination_port_range,
        source_address_prefix=rule.source_address_prefix,
        destination_address_prefix=rule.destination_address_prefix,
    )


def build_security_group(
    spec: SecurityGroup, deployment: "ResourceGraphDeployment"
) -> az_network.NetworkSecurityGroup:
    """
    Rules are declared inline so the group is replaced as a whole; rules
    added out of band are dropped on the next update.
    """
    return az_network.NetworkSecurityGroup(
        spec.name,
        az_network.NetworkSecurityGroupInitArgs(
            network_security_group_name=spec.name,
            resource_group_name=deployment.resolve(spec.resource_group, "name"),
            location=deployment.location(spec.name),
            security_rules=[
                security_rule_args(spec.name, rule) for rule in spec.rules
            ],
            tags=spec.tags or None,
        ),
        opts=deployment.opts,
    )


def build_public_address(
    spec: PublicAddress, deployment: "ResourceGraphDeployment"
) -> az_network.PublicIPAddress:
    return az_network.PublicIPAddress(
        spec.name,
        public_ip_address_name=spec.name,
        resource_group_name=deployment.resolve(spec.resource_group, "name"),
        location=deployment.location(spec.name),
        public_ip_allocation_method=spec.allocation,
        sku=az_network.PublicIPAddressSkuArgs(name=spec.sku),
        tags=spec.tags or None,
        opts=deployment.opts,
    )


def build_network_interface(
    spec: NetworkInterface, deployment: "ResourceGraphDeployment"
) -> az_network.NetworkInterface:
    security_group_id = deployment.associated_security_group(spec.name)
    return az_network.NetworkInterface(
        spec.name,
        network_interface_name=spec.name,
        resource_group_name=deployment.resolve(spec.resource_group, "name"),
        location=deployment.location(spec.name),
        ip_configurations=[
            az_network.NetworkInterfaceIPConfigurationArgs(
                name=ip_config.name,
                subnet=az_network.SubnetArgs(
                    id=deployment.resolve(ip_config.subnet),
                ),
                private_ip_allocation_method=ip_config.allocation,
                private_ip_address=ip_config.private_ip_address,
                public_ip_address=(
                    az_network.PublicIPAddressArgs(
                        id=deployment.resolve(ip_config.public_address),
                    )
                    if ip_config.public_address is not None
                    else None
                ),
                primary=(i == 0),
            )
            for i, ip_config in enumerate(spec.ip_configurations)
        ],
        network_security_group=(
            az_network.NetworkSecurityGroupArgs(id=security_group_id)
            if security_group_id is not None
            else None
        ),
        tags=spec.tags or None,
        opts=deployment.opts,
    )
