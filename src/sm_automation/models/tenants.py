"""Tenant, target and desktop window catalogue."""

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

from sm_automation.core.exceptions import ValidationError

TRAIL_URL = "https://web.trailapp.com/trail#/"
TRAIL_REPORTS_URL = "https://web.trailapp.com/reports#/scores"
ATTENSI_URL = "https://admin.attensi.com/yo/dashboard"

SERVICE_PREFIX = "sushimetrics"
PARTITION_PREFIX = "persist:"


@dataclass(frozen=True)
class Target:
    """A dashboard page the automation can sign in to and capture.

    Attributes:
        key: Request identifier (e.g. "complete-tasks")
        label: Human-readable name
        url: Absolute URL of the page
    """

    key: str
    label: str
    url: str


@dataclass(frozen=True)
class Tenant:
    """A logical automation identity bound to one set of credentials.

    Attributes:
        key: Store/account identifier used by the serverless endpoints
        label: Human-readable store name
        window_key: Desktop window key for the same identity
        default_target: Target opened by the per-account snapshot endpoint
    """

    key: str
    label: str
    window_key: str
    default_target: str

    @property
    def service_id(self) -> str:
        """Stable credential service id (shared with the desktop shell)."""
        return f"{SERVICE_PREFIX}-{self.window_key}"

    @property
    def partition(self) -> str:
        """Storage partition identifier, unique per tenant."""
        return f"{PARTITION_PREFIX}{self.window_key}"

    @property
    def dashboard_host(self) -> str:
        """Host of the tenant's own dashboard."""
        return urlparse(TARGETS[self.default_target].url).netloc.lower()


TARGETS: dict[str, Target] = {
    "complete-tasks": Target("complete-tasks", "Complete Tasks", TRAIL_URL),
    "daily-report": Target("daily-report", "Daily Report", TRAIL_REPORTS_URL),
    "attensi-dashboard": Target("attensi-dashboard", "Attensi Dashboard", ATTENSI_URL),
}

TENANTS: dict[str, Tenant] = {
    "allerton": Tenant("allerton", "Allerton Road", "trail-allerton", "complete-tasks"),
    "sefton": Tenant("sefton", "Sefton Park", "trail-sefton", "complete-tasks"),
    "oldswan": Tenant("oldswan", "Old Swan", "trail-oldswan", "complete-tasks"),
    "attensi": Tenant("attensi", "Attensi", "attensi", "attensi-dashboard"),
}


class WindowKey(str, Enum):
    """Fixed enumeration of desktop windows, one per isolated partition."""

    TRAIL_ALLERTON = "trail-allerton"
    TRAIL_SEFTON = "trail-sefton"
    TRAIL_OLDSWAN = "trail-oldswan"
    ATTENSI = "attensi"

    @property
    def tenant(self) -> Tenant:
        for tenant in TENANTS.values():
            if tenant.window_key == self.value:
                return tenant
        raise KeyError(self.value)  # catalogue and enum are kept in step

    @property
    def service_id(self) -> str:
        return self.tenant.service_id

    @property
    def partition(self) -> str:
        return self.tenant.partition

    @property
    def url(self) -> str:
        return TARGETS[self.tenant.default_target].url

    @property
    def title(self) -> str:
        if self == WindowKey.ATTENSI:
            return "Attensi Dashboard"
        return f"Trail - {self.tenant.label}"


def get_tenant(key: str) -> Tenant:
    """Look up a tenant by store key or window key.

    Args:
        key: Store key ("allerton") or window key ("trail-allerton")

    Returns:
        The matching Tenant

    Raises:
        ValidationError: If the key is unknown
    """
    normalized = (key or "").strip().lower()
    if normalized in TENANTS:
        return TENANTS[normalized]
    for tenant in TENANTS.values():
        if tenant.window_key == normalized:
            return tenant
    raise ValidationError(
        f"Invalid account. Use {', '.join(TENANTS)}",
        field="account",
        value=key,
    )


def resolve_target(target: str | Target, allow_urls: bool = False) -> Target:
    """Resolve a target key, or an absolute URL when allowed, to a Target.

    Args:
        target: Known target key, absolute http(s) URL, or a Target
        allow_urls: Accept ad-hoc absolute URLs (operator use only)

    Returns:
        Resolved Target

    Raises:
        ValidationError: If the target is not a known key (or an allowed URL)
    """
    if isinstance(target, Target):
        if allow_urls or TARGETS.get(target.key) == target:
            return target
        target = target.url
    normalized = (target or "").strip()
    if normalized.lower() in TARGETS:
        return TARGETS[normalized.lower()]
    parsed = urlparse(normalized)
    if allow_urls and parsed.scheme in ("http", "https") and parsed.netloc:
        return Target(key=normalized, label=parsed.netloc, url=normalized)
    raise ValidationError(
        f"Invalid report type. Use {', '.join(TARGETS)}",
        field="reportType",
        value=target,
    )


def service_id_for(tenant_key: str) -> str:
    """Derive the credential service id for a tenant key.

    Unknown keys are namespaced the same way so that ad-hoc tenants
    still get a stable, non-colliding id.
    """
    try:
        return get_tenant(tenant_key).service_id
    except ValidationError:
        return f"{SERVICE_PREFIX}-{tenant_key.strip().lower()}"
