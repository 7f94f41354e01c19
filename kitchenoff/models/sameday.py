"""
Sameday Models - Wire format of the shipping carrier.
"""

from datetime import datetime
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# Carrier timestamps are Romanian local time without an offset
CARRIER_TIMEZONE = ZoneInfo("Europe/Bucharest")


class _CarrierModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ============================================================================
# Authentication
# ============================================================================

class AuthToken(_CarrierModel):
    """Token returned by /api/authenticate."""

    token: str
    expire_at: datetime

    @field_validator("expire_at", mode="before")
    @classmethod
    def _parse_expiry(cls, value):
        # Carrier format is "YYYY-MM-DD HH:MM"; ISO-8601 is accepted as well.
        if isinstance(value, str):
            try:
                value = datetime.strptime(value.strip(), "%Y-%m-%d %H:%M")
            except ValueError:
                value = datetime.fromisoformat(value.strip())
        if isinstance(value, datetime) and value.tzinfo is None:
            value = value.replace(tzinfo=CARRIER_TIMEZONE)
        return value


# ============================================================================
# Reference data
# ============================================================================

class ContactPerson(_CarrierModel):
    id: int
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    default: bool = False


class PickupPoint(_CarrierModel):
    """Sender pickup point registered with the carrier."""

    id: int
    name: str = Field(..., validation_alias=AliasChoices("name", "alias"))
    county: Optional[Any] = None
    city: Optional[Any] = None
    address: Optional[str] = None
    default_pickup_point: bool = Field(default=False, alias="defaultPickupPoint")
    contact_persons: List[ContactPerson] = Field(default_factory=list, alias="pickupPointContactPerson")


class OptionalTax(_CarrierModel):
    id: int
    name: str
    tax: Optional[float] = None


class CarrierService(_CarrierModel):
    """Delivery service offered to the account."""

    id: int
    name: str
    service_code: Optional[str] = Field(default=None, alias="serviceCode")
    optional_taxes: List[OptionalTax] = Field(default_factory=list, alias="serviceOptionalTaxes")


class County(_CarrierModel):
    id: int
    name: str
    code: Optional[str] = None


class City(_CarrierModel):
    id: int
    name: str
    county: Optional[Any] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")


# ============================================================================
# AWB
# ============================================================================

class AWBParcel(_CarrierModel):
    weight: float
    width: Optional[float] = None
    length: Optional[float] = None
    height: Optional[float] = None
    awb_parcel_number: Optional[str] = Field(default=None, alias="awbParcelNumber")


class AWBRecipient(_CarrierModel):
    name: str
    phone_number: str = Field(..., alias="phoneNumber")
    person_type: int = Field(default=0, alias="personType", description="0 individual, 1 company")
    company_name: Optional[str] = Field(default=None, alias="companyName")
    address: str
    county_id: Optional[int] = Field(default=None, alias="county")
    city_id: Optional[int] = Field(default=None, alias="city")
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    email: Optional[str] = None


class CreateAWBRequest(_CarrierModel):
    """Body of POST /api/awb."""

    pickup_point_id: int = Field(..., alias="pickupPoint")
    service_id: int = Field(..., alias="service")
    package_type: int = Field(default=0, alias="packageType", description="0 parcel, 1 envelope, 2 large")
    awb_payment: int = Field(default=1, alias="awbPayment", description="1 sender, 2 recipient, 3 third party")
    recipient: AWBRecipient = Field(..., alias="awbRecipient")
    parcels: List[AWBParcel]
    cash_on_delivery: float = Field(default=0, alias="cashOnDelivery")
    insured_value: float = Field(default=0, alias="insuredValue")
    observation: Optional[str] = None
    client_internal_reference: Optional[str] = Field(default=None, alias="clientInternalReference")

    def to_wire(self) -> dict:
        body = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        body["packageNumber"] = len(self.parcels)
        body["packageWeight"] = sum(parcel.weight for parcel in self.parcels)
        return body


class CreateAWBResponse(_CarrierModel):
    """Carrier answer to an AWB creation."""

    awb_number: str = Field(..., alias="awbNumber")
    parcel_numbers: List[str] = Field(default_factory=list, alias="parcels")
    cost: Optional[float] = Field(default=None, alias="awbCost")
    currency: Optional[str] = None
    label_url: Optional[str] = Field(default=None, alias="pdfLink")

    @field_validator("parcel_numbers", mode="before")
    @classmethod
    def _flatten_parcels(cls, value):
        numbers = []
        for parcel in value or []:
            if isinstance(parcel, dict):
                number = parcel.get("awbNumber") or parcel.get("parcelAwbNumber")
                if number:
                    numbers.append(str(number))
            else:
                numbers.append(str(parcel))
        return numbers


class AwbStatusEntry(_CarrierModel):
    """Single step in an AWB's status history."""

    status: Optional[str] = None
    status_label: Optional[str] = Field(default=None, alias="statusLabel")
    status_date: Optional[str] = Field(default=None, alias="statusDate")
    county: Optional[str] = None
    transit_location: Optional[str] = Field(default=None, alias="transitLocation")
