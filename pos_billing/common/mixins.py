"""
Common mixins for schemas exchanged with the restaurant backend
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel


TWO_PLACES = Decimal('0.01')

# Decimal en Python, número en el JSON que consume el backend
WireDecimal = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def money(value) -> Decimal:
    """Redondear a 2 decimales como lo exige el SRI"""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class CamelModel(BaseModel):
    """Base schema: snake_case in Python, camelCase on the wire (backend JSON)"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
