from app.models.user import User  # noqa: F401
from app.models.mbee import (  # noqa: F401
    Artifact,
    ArtifactRevision,
    AuditMixin,
    Branch,
    Element,
    Organization,
    Project,
    ProjectVisibility,
    Webhook,
    WebhookType,
)
