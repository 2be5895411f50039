"""
qrforge/models/subscription.py

Subscription tier and feature vocabulary.

Tiers are totally ordered by entitlement: free < pro < business.
FeatureKey is the single canonical feature vocabulary; it carries both the
usage/permission keys (qrCodesGenerated, noWatermark, ...) and the
limit/switch keys (maxQRCodes, bulkGenerationAllowed, ...).
"""

from enum import Enum


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    # str already defines ordering; compare by entitlement rank instead
    def __lt__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank >= other.rank


_TIER_RANK = {
    SubscriptionTier.FREE: 0,
    SubscriptionTier.PRO: 1,
    SubscriptionTier.BUSINESS: 2,
}


class FeatureKey(str, Enum):
    # Metered: counted against a daily/monthly budget
    QR_CODES_GENERATED = "qrCodesGenerated"
    BARCODES_GENERATED = "barcodesGenerated"
    BULK_GENERATIONS = "bulkGenerations"
    AI_CUSTOMIZATIONS = "aiCustomizations"

    # Permissions: on/off per tier
    NO_WATERMARK = "noWatermark"
    SVG_DOWNLOAD = "svgDownload"
    PDF_DOWNLOAD = "pdfDownload"
    QR_CODE_TRACKING = "qrCodeTracking"
    ENHANCED_BARCODES = "enhancedBarcodes"
    FILE_UPLOADS = "fileUploads"
    ANALYTICS = "analytics"

    # Caps: hard numeric limits
    MAX_QR_CODES = "maxQRCodes"
    MAX_BARCODES = "maxBarcodes"
    MAX_BULK_ITEMS = "maxBulkItems"
    MAX_AI_CUSTOMIZATIONS = "maxAICustomizations"
    MAX_TEAM_MEMBERS = "maxTeamMembers"

    # Switches from the limit vocabulary
    BULK_GENERATION_ALLOWED = "bulkGenerationAllowed"
    AI_CUSTOMIZATION_ALLOWED = "aiCustomizationAllowed"
    ANALYTICS_ENABLED = "analyticsEnabled"
    CUSTOM_BRANDING_ALLOWED = "customBrandingAllowed"
    TEAM_MEMBERS_ALLOWED = "teamMembersAllowed"


class UsageKind(str, Enum):
    """How remaining usage should be read for a feature."""
    METERED = "metered"
    UNLIMITED = "unlimited"
    NOT_APPLICABLE = "not_applicable"
