"""Authenticated caller, resolved once per request by the security layer."""
from dataclasses import dataclass
from typing import Union
from uuid import UUID


@dataclass(frozen=True)
class UserPrincipal:
    id: UUID
    role: str = "user"


@dataclass(frozen=True)
class RestaurantPrincipal:
    id: UUID
    role: str = "restaurant"


Principal = Union[UserPrincipal, RestaurantPrincipal]
