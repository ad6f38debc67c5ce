"""
Module: rental_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/.  Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Read-only access: no session.add(), delete(), commit() or flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Tenant scoping: every query filters on tenant_id.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from rental_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):

    def __init__(self, session: Session):
        self.session = session
