"""
Vendor-owned records as seen by this service.

Each record is parsed from the vendor's JSON and only carries the fields the
linking logic reads. Metadata keys are the linking contract between vendors:

- Supabase user_metadata: license_user_id, payment_customer_id
- Keygen user metadata (camel-cased by Keygen): authAccountId, paymentCustomerId
- Stripe customer metadata: license_account_id, auth_account_id
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

# Supabase user_metadata keys
AUTH_LICENSE_USER_ID = "license_user_id"
AUTH_PAYMENT_CUSTOMER_ID = "payment_customer_id"

# Keygen metadata keys
LICENSE_AUTH_ACCOUNT_ID = "authAccountId"
LICENSE_PAYMENT_CUSTOMER_ID = "paymentCustomerId"
LICENSE_SUBSCRIPTION_ID = "subscriptionId"

# Stripe customer metadata keys
PAYMENT_LICENSE_ACCOUNT_ID = "license_account_id"
PAYMENT_AUTH_ACCOUNT_ID = "auth_account_id"


class AuthAccount(BaseModel):
    """Supabase auth user."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AuthAccount":
        return cls(
            id=payload["id"],
            email=payload.get("email"),
            metadata=payload.get("user_metadata") or {},
            raw=payload,
        )

    @property
    def license_account_id(self) -> Optional[str]:
        return self.metadata.get(AUTH_LICENSE_USER_ID)


class LicenseAccount(BaseModel):
    """Keygen user."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "LicenseAccount":
        attributes = resource.get("attributes") or {}
        return cls(
            id=resource["id"],
            email=attributes.get("email"),
            metadata=attributes.get("metadata") or {},
        )

    @property
    def auth_account_id(self) -> Optional[str]:
        return self.metadata.get(LICENSE_AUTH_ACCOUNT_ID)

    @property
    def payment_customer_id(self) -> Optional[str]:
        return self.metadata.get(LICENSE_PAYMENT_CUSTOMER_ID)


class PaymentCustomer(BaseModel):
    """Stripe customer."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    deleted: bool = False

    @classmethod
    def from_stripe(cls, obj: Any) -> "PaymentCustomer":
        # StripeObject behaves like a dict; deleted customers only carry id + deleted.
        metadata = obj.get("metadata") or {}
        return cls(
            id=obj["id"],
            email=obj.get("email"),
            metadata=dict(metadata),
            deleted=bool(obj.get("deleted", False)),
        )

    @property
    def license_account_id(self) -> Optional[str]:
        return self.metadata.get(PAYMENT_LICENSE_ACCOUNT_ID)


class License(BaseModel):
    """Keygen license."""
    model_config = ConfigDict(frozen=True)

    id: str
    key: Optional[str] = None
    status: Optional[str] = None  # ACTIVE, INACTIVE, EXPIRED, SUSPENDED, BANNED
    uses: Optional[int] = None
    expiry: Optional[datetime] = None
    floating: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "License":
        attributes = resource.get("attributes") or {}
        return cls(
            id=resource["id"],
            key=attributes.get("key"),
            status=attributes.get("status"),
            uses=attributes.get("uses"),
            expiry=attributes.get("expiry"),
            floating=bool(attributes.get("floating", False)),
            metadata=attributes.get("metadata") or {},
        )


class SessionClaims(BaseModel):
    """Decoded session token."""
    model_config = ConfigDict(frozen=True)

    sub: str
    email: Optional[str] = None
    license_account_id: Optional[str] = None
    license_token: Optional[str] = None
    iat: int
    exp: int
