from app.domain.models.api_error_log import ApiErrorLog
from app.domain.models.api_metric import ApiMetric
from app.domain.models.audit_log import AuditLog
from app.domain.models.company_profile import CompanyProfile
from app.domain.models.company_verification_document import CompanyVerificationDocument
from app.domain.models.offer import Offer, OfferVideo
from app.domain.models.platform_health_snapshot import PlatformHealthSnapshot
from app.domain.models.platform_setting import PlatformSetting
from app.domain.models.storage_metric import StorageMetric
from app.domain.models.user import User
from app.domain.models.video_hosting_cost import VideoHostingCost

__all__ = [
    "ApiErrorLog",
    "ApiMetric",
    "AuditLog",
    "CompanyProfile",
    "CompanyVerificationDocument",
    "Offer",
    "OfferVideo",
    "PlatformHealthSnapshot",
    "PlatformSetting",
    "StorageMetric",
    "User",
    "VideoHostingCost",
]
