from datetime import date
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class IdentityDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["passport"] = "passport"
    unique_identifier: str = Field(min_length=1, max_length=64)
    issuing_country_code: str = Field(min_length=2, max_length=2)
    expires_on: date


class _PassengerBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    given_name: str = Field(min_length=1, max_length=100)
    family_name: str = Field(min_length=1, max_length=100)
    born_on: date
    gender: Literal["m", "f"] | None = None
    identity_document: IdentityDocument | None = None

    @field_validator("born_on")
    @classmethod
    def _born_in_past(cls, value: date) -> date:
        if value >= date.today():
            raise ValueError("born_on must be in the past")
        return value

    def to_provider_payload(self) -> dict:
        payload = {
            "type": self.type,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "born_on": self.born_on.isoformat(),
        }
        if self.gender:
            payload["gender"] = self.gender
        if self.identity_document:
            doc = self.identity_document
            payload["identity_documents"] = [
                {
                    "type": doc.type,
                    "unique_identifier": doc.unique_identifier,
                    "issuing_country_code": doc.issuing_country_code.upper(),
                    "expires_on": doc.expires_on.isoformat(),
                }
            ]
        return payload


class AdultPassenger(_PassengerBase):
    type: Literal["adult"] = "adult"
    title: Literal["mr", "ms", "mrs", "miss", "dr"]
    email: str | None = None
    phone_number: str | None = None

    def to_provider_payload(self) -> dict:
        payload = super().to_provider_payload()
        payload["title"] = self.title
        if self.email:
            payload["email"] = self.email
        if self.phone_number:
            payload["phone_number"] = self.phone_number
        return payload


class ChildPassenger(_PassengerBase):
    type: Literal["child"] = "child"


class InfantPassenger(_PassengerBase):
    type: Literal["infant"] = "infant"


Passenger = Annotated[
    Union[AdultPassenger, ChildPassenger, InfantPassenger],
    Field(discriminator="type"),
]

passenger_list_adapter = TypeAdapter(list[Passenger])


def load_passengers(raw_json: str | None) -> list[AdultPassenger | ChildPassenger | InfantPassenger]:
    """Parses a stored passenger manifest back into typed passengers."""
    if not raw_json:
        return []
    return passenger_list_adapter.validate_json(raw_json)


def dump_passengers(passengers: list) -> str:
    return passenger_list_adapter.dump_json(passengers).decode("utf-8")


def count_by_type(passengers: list) -> dict[str, int]:
    counts = {"adult": 0, "child": 0, "infant": 0}
    for passenger in passengers:
        counts[passenger.type] += 1
    return counts
