# __main__.py
"""
Pulumi program for a Windows VM reachable over RDP
"""

import modulepath_fixer  # noqa: F401

import os

from pulumi import export, log, Output
from config import (
    add_my_public_ip_to_nsg,
    azure_location,
    config,
    default_tags,
    generate_admin_password,
    public_ip_allocation,
    resource_group_suffix,
    subnet_address_prefix,
    vm_spec,
    vnet_address_prefixes,
)
from modules.deployment import ResourceGraphDeployment
from modules.topology import (
    ADMIN_PASSWORD_KEY,
    TopologySettings,
    declare_vm_topology,
)
from utils.module_dataclasses import SecretsObject
from utils.utils import get_my_public_ip, load_admin_password

DEBUG = os.getenv("DEBUG")
resource_group_name = f"{azure_location}-{resource_group_suffix}"

remote_access_source = "*"
if add_my_public_ip_to_nsg:
    remote_access_source = get_my_public_ip()

graph = declare_vm_topology(
    TopologySettings(
        location=azure_location,
        resource_group_name=resource_group_name,
        vnet_address_prefixes=vnet_address_prefixes,
        subnet_address_prefix=subnet_address_prefix,
        vm_spec=vm_spec,
        tags=default_tags,
        remote_access_source=remote_access_source,
        public_ip_allocation=public_ip_allocation,
        generate_admin_password=generate_admin_password,
    )
)
if DEBUG:
    log.info(
        "Resource order: "
        + ", ".join(node.name for node in graph.topological_order())
    )

admin_password, password_origin = load_admin_password(config)

deployment = ResourceGraphDeployment(
    f"{resource_group_name}-deployment",
    graph,
    secrets=SecretsObject(
        secrets=(
            {ADMIN_PASSWORD_KEY: admin_password}
            if admin_password is not None
            else {}
        ),
        origin=password_origin,
    ),
)

export(
    "public_ip_address",
    deployment.public_address(f"{vm_spec.server_name}-vm"),
)

if ADMIN_PASSWORD_KEY in deployment.generated_secrets:
    export(
        "admin_password",
        Output.secret(deployment.generated_secrets[ADMIN_PASSWORD_KEY]),
    )
