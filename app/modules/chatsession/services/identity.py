from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from uuid import uuid4


class IdentityKind(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Identity:
    id: str
    kind: IdentityKind
    display_name: str = "Guest"
    email: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return self.kind is IdentityKind.ANONYMOUS

    @classmethod
    def anonymous(cls, identity_id: str) -> "Identity":
        return cls(id=identity_id, kind=IdentityKind.ANONYMOUS)

    @classmethod
    def authenticated(
        cls,
        identity_id: str,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> "Identity":
        return cls(
            id=identity_id,
            kind=IdentityKind.AUTHENTICATED,
            display_name=display_name or email or "User",
            email=email,
        )


@dataclass(frozen=True)
class SignedIn:
    identity: Identity


@dataclass(frozen=True)
class SignedOut:
    pass


# Events emitted by the external auth provider
IdentityEvent = Union[SignedIn, SignedOut]


def new_anonymous_id() -> str:
    return f"anon-{uuid4().hex}"
