from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, conint

class FileUpload(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    size: Optional[int] = None
    # data URL or bare base64
    data: str

class SaveApplicationReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    application_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("applicationId", "application_id"))
    form_data: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("formData", "form_data"))
    file_data: Dict[str, List[FileUpload]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("fileData", "file_data"),
    )

class ApplicationRefReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    application_id: str = Field(validation_alias=AliasChoices("applicationId", "application_id"))

class PaymentIntentReq(ApplicationRefReq):
    pass

class CheckoutReq(ApplicationRefReq):
    success_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("successUrl", "success_url"))
    cancel_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("cancelUrl", "cancel_url"))

class ValidateAddressReq(BaseModel):
    street1: Optional[str] = None
    street2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = "US"

class ValidateCouponReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    coupon_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("couponCode", "coupon_code"))

class ShippingAddress(BaseModel):
    name: Optional[str] = None
    company: Optional[str] = None
    street1: str
    street2: Optional[str] = None
    city: str
    state: Optional[str] = None
    zip: str
    country: str = "US"
    phone: Optional[str] = None
    email: Optional[str] = None

class Parcel(BaseModel):
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    weight: float = Field(gt=0)

class ShippingLabelReq(BaseModel):
    application_id: str
    to_address: ShippingAddress
    parcel: Parcel
    max_delivery_days: Optional[conint(ge=1)] = None
    options: Dict[str, Any] = Field(default_factory=dict)
