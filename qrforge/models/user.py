from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from qrforge.models.subscription import FeatureKey, SubscriptionTier


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    created_at: datetime
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: str = "user"
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @staticmethod
    def normalized_display_name(user_id: str, display_name: Optional[str] = None) -> str:
        if display_name and display_name.strip():
            return display_name.strip()
        # Deterministic fallback handle
        import hashlib
        h = hashlib.sha1(user_id.encode("utf-8")).hexdigest()
        return f"@u_{h[-6:]}"


class FeaturesUsage(BaseModel):
    """Cumulative per-feature usage totals as stored on the user record."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    qr_codes_generated: int = Field(0, ge=0, alias="qrCodesGenerated")
    barcodes_generated: int = Field(0, ge=0, alias="barcodesGenerated")
    bulk_generations: int = Field(0, ge=0, alias="bulkGenerations")
    ai_customizations: int = Field(0, ge=0, alias="aiCustomizations")

    def get(self, feature: FeatureKey) -> int:
        field = _USAGE_FIELDS.get(feature)
        if field is None:
            return 0
        return getattr(self, field)

    @classmethod
    def from_counts(cls, counts: Dict[FeatureKey, int]) -> "FeaturesUsage":
        return cls(**{_USAGE_FIELDS[f]: n for f, n in counts.items() if f in _USAGE_FIELDS})


_USAGE_FIELDS = {
    FeatureKey.QR_CODES_GENERATED: "qr_codes_generated",
    FeatureKey.BARCODES_GENERATED: "barcodes_generated",
    FeatureKey.BULK_GENERATIONS: "bulk_generations",
    FeatureKey.AI_CUSTOMIZATIONS: "ai_customizations",
}


class UsageWindow(BaseModel):
    """Current daily/monthly window counts for one metered feature."""
    model_config = ConfigDict(frozen=True)

    daily: int = Field(0, ge=0)
    monthly: int = Field(0, ge=0)
    daily_window_start: Optional[datetime] = None
    monthly_window_start: Optional[datetime] = None


class UserRecord(BaseModel):
    """
    What the usage core reads for a user.

    features_usage holds cumulative totals. usage_windows, when present, holds
    the server's current daily/monthly counts keyed by feature value.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: str = "user"
    subscription_tier: SubscriptionTier = Field(SubscriptionTier.FREE, alias="subscriptionTier")
    features_usage: FeaturesUsage = Field(default_factory=FeaturesUsage, alias="featuresUsage")
    usage_windows: Optional[Dict[str, UsageWindow]] = Field(None, alias="usageWindows")

    @classmethod
    def default_for(cls, user_id: str, email: Optional[str] = None, display_name: Optional[str] = None) -> "UserRecord":
        """Free tier, zeroed counters: used whenever the real record is unavailable."""
        return cls(user_id=user_id, email=email, display_name=display_name)
