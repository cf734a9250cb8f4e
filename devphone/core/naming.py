"""Session naming and label-based discovery."""

import secrets
from typing import Iterable, TypeVar

FAMILY_PREFIX = "dev-phone-"

# Webhook backends are deployed under the session name, so their domains
# share the family prefix.
FAMILY_WEBHOOK_PREFIX = "https://dev-phone"

T = TypeVar("T")


def generate_session_name() -> str:
    """Generate a session name such as ``dev-phone-0421``."""
    return f"{FAMILY_PREFIX}{secrets.randbelow(10_000):04d}"


def has_label_prefix(label: str | None, prefix: str) -> bool:
    """Check if a label starts with prefix. Unlabelled resources never match."""
    return label is not None and label.startswith(prefix)


def filter_by_label_prefix(resources: Iterable[T], prefix: str) -> list[T]:
    """Keep resources whose ``label`` starts with prefix (case-sensitive)."""
    return [r for r in resources if has_label_prefix(getattr(r, "label", None), prefix)]
