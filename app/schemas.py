from datetime import date
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.utils import to_calendar_date


class ParcelAddress(BaseModel):
    """Bed address as reported by the grower API."""

    model_config = ConfigDict(populate_by_name=True)

    street: Optional[str] = Field(None, alias="Street1")
    street2: Optional[str] = Field(None, alias="Street2")
    city: Optional[str] = Field(None, alias="City")
    state: Optional[str] = Field(None, alias="State")
    postal_code: Optional[str] = Field(None, alias="PostalCode")
    country: Optional[str] = Field(None, alias="Country")

    @property
    def key(self) -> tuple:
        return (self.street, self.city, self.state, self.postal_code)


class FruitType(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    export: bool = Field(False, alias="Export")
    global_gap: bool = Field(False, alias="GlobalGap")
    organic: bool = Field(False, alias="Organic")
    processed: bool = Field(False, alias="Processed")
    white: bool = Field(False, alias="White")

    @field_validator("*", mode="before")
    @classmethod
    def _none_is_false(cls, v: Any) -> Any:
        return False if v is None else v


class ShapeIn(BaseModel):
    type: Optional[str] = None
    value: Optional[str] = None


class ParcelRecord(BaseModel):
    """One bed of one contract, as returned by GET /bog/{contract_number}."""

    model_config = ConfigDict(populate_by_name=True)

    contract_id: int = Field(..., alias="ContractId")
    contract_number: str = Field(..., alias="ContractNumber")
    address: ParcelAddress = Field(..., alias="Address")
    block_name: Optional[str] = Field(None, alias="BogName")
    bed_history_id: int = Field(..., alias="BedHistoryId")
    handler_section_name: Optional[str] = Field(None, alias="HandlerSectionName")
    acres: Optional[float] = Field(None, alias="Acres")
    variety: Optional[str] = Field(None, alias="Variety")
    plant_date: Optional[date] = Field(None, alias="PlantDate")
    fruit_type: FruitType = Field(default_factory=FruitType, alias="FruitType")
    shapes: List[ShapeIn] = Field(default_factory=list, alias="Shape")

    @field_validator("contract_number", mode="before")
    @classmethod
    def _contract_number_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("plant_date", mode="before")
    @classmethod
    def _plant_date(cls, v: Any) -> Optional[date]:
        return to_calendar_date(v)

    @field_validator("fruit_type", mode="before")
    @classmethod
    def _fruit_type_default(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("shapes", mode="before")
    @classmethod
    def _shapes_default(cls, v: Any) -> Any:
        return [] if v is None else v


class FarmOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: Optional[str] = None
    name2: Optional[str] = None
    voting_contact: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None


class ContractFetchRequest(BaseModel):
    contract_numbers: List[str]
    crop_year: int
    token: Optional[str] = None


class GrowerListEntry(BaseModel):
    """Row of the grower list used to name farms; extBpId is the contract number."""

    model_config = ConfigDict(extra="ignore")

    extBpId: Optional[str] = None
    bpName: Optional[str] = None

    @field_validator("extBpId", mode="before")
    @classmethod
    def _id_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v
