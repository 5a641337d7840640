from dataclasses import dataclass, field
from typing import Optional

from pulumi import Input, Output


@dataclass
class SecretsObject:
    """
    Dataclass to hold values for the sensitive inputs of a deployment.
    Args:
        secrets (dict[str, Input[str]]): The secret values, keyed by the
            name of the sensitive input they fill.
        origin (str, optional): Where the values came from, never the
            values themselves. Logged by the deployment when DEBUG is set.
    """

    secrets: dict[str, Input[str]] = field(default_factory=dict)
    origin: Optional[str] = None

    def __post_init__(self):
        for key, value in self.secrets.items():
            if not isinstance(value, Output):
                self.secrets[key] = Output.secret(value)
