import os
from typing import Optional

import requests
from pulumi import Config, Output

ADMIN_PASSWORD_ENV = "VM_ADMIN_PASSWORD"


def get_my_public_ip(timeout: float = 10) -> str:
    """
    Public address of the machine running the deployment, as a /32 prefix
    usable as a security rule source.
    """
    response = requests.get("https://api.ipify.org", timeout=timeout)
    response.raise_for_status()
    return f"{response.text.strip()}/32"


def load_admin_password(config: Config) -> tuple[Optional[Output[str]], str]:
    """
    Returns the administrator password and where it came from: the
    encrypted stack config first, then the environment. The password is
    (None, "unset") when neither provides one.
    """
    password = config.get_secret("admin_password")
    if password is not None:
        return password, "stack config"

    env_password = os.getenv(ADMIN_PASSWORD_ENV)
    if env_password:
        return Output.secret(env_password), f"${ADMIN_PASSWORD_ENV}"

    return None, "unset"
