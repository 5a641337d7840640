import os
from typing import Callable, Optional

from pulumi import ComponentResource, Input, Output, Resource, ResourceOptions, log
from pulumi_random import RandomPassword

from modules.compute import build_virtual_machine, lookup_public_address
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
    Ref,
    ResourceGraph,
    Sensitive,
    SecurityGroupAssociation,
)
from modules.network import (
    build_network_interface,
    build_public_address,
    build_resource_group,
    build_security_group,
    build_subnet,
    build_virtual_network,
)
from utils.module_dataclasses import SecretsObject

DEBUG = os.getenv("DEBUG")


def _fold_association(
    spec: SecurityGroupAssociation, deployment: "ResourceGraphDeployment"
) -> Resource:
    # Azure Native has no association resource: the security group is set on
    # the target subnet or NIC, which has already been registered.
    return deployment.resources[spec.target.target]


BUILDERS: dict[str, Callable] = {
    RESOURCE_GROUP: build_resource_group,
    VIRTUAL_NETWORK: build_virtual_network,
    SUBNET: build_subnet,
    SECURITY_GROUP: build_security_group,
    SECURITY_GROUP_ASSOCIATION: _fold_association,
    PUBLIC_ADDRESS: build_public_address,
    NETWORK_INTERFACE: build_network_interface,
    VIRTUAL_MACHINE: build_virtual_machine,
}


class ResourceGraphDeployment(ComponentResource):
    """
    Register every resource of a validated `ResourceGraph` with the Pulumi
    engine, dependencies first. Diffing, create/update/delete and retries are
    left to the engine.

    Args:
        name (str): Logical name of the component.
        graph (ResourceGraph): The declaration to deploy.
        secrets (SecretsObject, optional): Values for the `Sensitive` inputs
            of the graph, keyed by `Sensitive.key`.
    """

    def __init__(
        self,
        name: str,
        graph: ResourceGraph,
        secrets: Optional[SecretsObject] = None,
        opts: Optional[ResourceOptions] = None,
    ):
        graph.validate()
        self.graph = graph
        self.secrets: dict[str, Input[str]] = secrets.secrets if secrets else {}
        if DEBUG and secrets is not None and secrets.origin:
            log.info(f"Sensitive inputs supplied from {secrets.origin}")
        self._check_sensitive_inputs()
        order = graph.topological_order(extra_edges=self._association_edges())

        super().__init__("azurevm:graph:ResourceGraphDeployment", name, None, opts)

        self.opts = ResourceOptions.merge(opts, ResourceOptions(parent=self))
        self.resources: dict[str, Resource] = {}
        self.generated_secrets: dict[str, Output[str]] = {}

        for node in order:
            if DEBUG:
                log.info(f"Registering {node.type} {node.name}")
            self.resources[node.name] = BUILDERS[node.type](
                graph.spec(node.name), self
            )

        self.register_outputs({})

    def _association_edges(self) -> list[tuple[str, str]]:
        # The security group has to exist before the subnet/NIC carrying it.
        return [
            (spec.security_group.target, spec.target.target)
            for spec in self.graph.specs_of_type(SECURITY_GROUP_ASSOCIATION)
        ]

    def _check_sensitive_inputs(self) -> None:
        missing = [
            f"no value supplied for sensitive input '{vm.admin_password.key}' "
            f"of virtual_machine '{vm.name}'"
            for vm in self.graph.specs_of_type(VIRTUAL_MACHINE)
            if not vm.admin_password.generate
            and vm.admin_password.key not in self.secrets
        ]
        if missing:
            raise DeclarationError(missing)

    def resolve(self, ref: Ref, attribute: str = "id") -> Output:
        return getattr(self.resources[ref.target], attribute)

    def location(self, name: str) -> Optional[str]:
        return self.graph.effective_location(name)

    def associated_security_group(self, name: str) -> Optional[Output[str]]:
        for spec in self.graph.referrers(name, SECURITY_GROUP_ASSOCIATION):
            if spec.target.target == name:
                return self.resolve(spec.security_group)
        return None

    def sensitive(self, value: Sensitive, owner: str) -> Output[str]:
        if value.key in self.secrets:
            return Output.secret(self.secrets[value.key])
        if value.key in self.generated_secrets:
            return self.generated_secrets[value.key]

        password = RandomPassword(
            f"{owner}-{value.key}",
            length=16,
            keepers={"version": value.version},
            lower=True,
            upper=True,
            special=True,
            override_special="!#%^*_+=-./?~",
            numeric=True,
            min_lower=1,
            min_upper=1,
            min_numeric=1,
            min_special=1,
            opts=self.opts,
        )
        self.generated_secrets[value.key] = password.result
        return password.result

    def public_address(self, vm_name: str) -> Optional[Output[str]]:
        return lookup_public_address(self.graph.spec(vm_name), self)
