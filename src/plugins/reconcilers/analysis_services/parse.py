"""
Resource ID parsing for Analysis Services servers.

IDs have the shape::

    /subscriptions/{sub}/resourceGroups/{rg}/providers/Microsoft.AnalysisServices/servers/{name}
"""

from dataclasses import dataclass

from plugins.reconcilers.analysis_services.errors import ResourceIdError

PROVIDER_NAMESPACE = "Microsoft.AnalysisServices"
RESOURCE_TYPE = "servers"


@dataclass(frozen=True)
class ServerId:
    """Parsed address of an Analysis Services server."""

    subscription_id: str
    resource_group: str
    name: str

    def __str__(self) -> str:
        return (
            f"/subscriptions/{self.subscription_id}"
            f"/resourceGroups/{self.resource_group}"
            f"/providers/{PROVIDER_NAMESPACE}/{RESOURCE_TYPE}/{self.name}"
        )


def parse_server_id(resource_id: str) -> ServerId:
    """
    Parse a resource ID string into its components.

    Segment keys are matched case-insensitively since the control plane
    does not preserve their casing consistently.

    Args:
        resource_id: The persisted resource ID.

    Returns:
        The parsed ServerId.

    Raises:
        ResourceIdError: If the string is not a server resource ID.
    """
    if not resource_id or not resource_id.startswith("/"):
        raise ResourceIdError(
            f"Cannot parse Analysis Services Server ID {resource_id!r}: "
            f"expected a path starting with '/'"
        )

    parts = resource_id.strip("/").split("/")
    if len(parts) % 2 != 0:
        raise ResourceIdError(
            f"Cannot parse Analysis Services Server ID {resource_id!r}: "
            f"the number of segments is not even"
        )

    segments = {}
    for key, value in zip(parts[0::2], parts[1::2]):
        if not value:
            raise ResourceIdError(
                f"Cannot parse Analysis Services Server ID {resource_id!r}: "
                f"segment {key!r} has an empty value"
            )
        segments[key.lower()] = value

    expected = {"subscriptions", "resourcegroups", "providers", RESOURCE_TYPE}
    missing = sorted(expected - set(segments))
    if missing:
        raise ResourceIdError(
            f"Cannot parse Analysis Services Server ID {resource_id!r}: "
            f"missing segments {', '.join(missing)}"
        )
    extra = sorted(set(segments) - expected)
    if extra:
        raise ResourceIdError(
            f"Cannot parse Analysis Services Server ID {resource_id!r}: "
            f"unexpected segments {', '.join(extra)}"
        )

    if segments["providers"].lower() != PROVIDER_NAMESPACE.lower():
        raise ResourceIdError(
            f"Cannot parse Analysis Services Server ID {resource_id!r}: "
            f"provider must be {PROVIDER_NAMESPACE!r}"
        )

    return ServerId(
        subscription_id=segments["subscriptions"],
        resource_group=segments["resourcegroups"],
        name=segments[RESOURCE_TYPE],
    )
