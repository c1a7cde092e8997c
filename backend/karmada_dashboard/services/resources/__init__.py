from karmada_dashboard.services.resources.kinds import KINDS, ResourceKind, get_kind
from karmada_dashboard.services.resources.service import ResourceService

__all__ = ["KINDS", "ResourceKind", "ResourceService", "get_kind"]
