from modules.topology import VMSpecs
import pulumi

config = pulumi.Config()

# Environment configuration
azure_location: str = config.require("location")
resource_group_suffix: str = config.require("resource_group_suffix")
vnet_address_prefixes: list[str] = config.require_object(
    "vnet_address_prefixes"
)
subnet_address_prefix: str = config.require("subnet_address_prefix")
add_my_public_ip_to_nsg: bool = config.get_bool("add_my_public_ip_to_nsg") or False
default_tags: dict = config.get_object("tags") or {
    "environment": "dev",
    "owner": "pulumi",
}

# Basic SKU public IPs can no longer be created; Static gets a Standard SKU.
public_ip_allocation: str = config.get("public_ip_allocation") or "Static"

# Admin password is read separately: config.get_secret / $VM_ADMIN_PASSWORD
generate_admin_password: bool = (
    config.get_bool("generate_admin_password") or False
)

# VM specification
vm_spec = VMSpecs(**config.require_object("vm_spec"))
