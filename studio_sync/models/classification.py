from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""Classification result model and its enums.

A ClassificationResult is derived from one line item and recomputed on every
run; it is never persisted on its own.
"""

__all__ = [
    "Block",
    "ClassName",
    "ClassificationResult",
    "LEVEL_CLASSES",
    "Role",
    "SOLO_CLASSES",
]


class ClassName(Enum):
    LEVEL_1 = "Level 1"
    LEVEL_2 = "Level 2"
    LEVEL_3 = "Level 3"
    BODY_MOVEMENT = "Body Movement"
    SHINES = "Shines"
    BUNDLE = "Bundle"
    FREE_CLASS = "Free Class"
    UNKNOWN = "Unknown"


LEVEL_CLASSES = (ClassName.LEVEL_1, ClassName.LEVEL_2, ClassName.LEVEL_3)
# Non-partnered classes: never carry a role
SOLO_CLASSES = (ClassName.BODY_MOVEMENT, ClassName.SHINES)


class Block(Enum):
    """Sub-period of a term a purchase covers."""
    A = "A"
    B = "B"
    BOTH = "Both"
    NONE = "None"

    def covers(self, other: Block) -> bool:
        """True if a purchase for this block attends `other`."""
        if self is Block.NONE or other is Block.NONE:
            return False
        return self is Block.BOTH or other is Block.BOTH or self is other

    def merge(self, other: Block) -> Block:
        if self is other:
            return self
        if self is Block.NONE:
            return other
        if other is Block.NONE:
            return self
        return Block.BOTH

    @property
    def column_value(self) -> str | None:
        return None if self is Block.NONE else self.value


class Role(Enum):
    LEADER = "Leader"
    FOLLOWER = "Follower"
    NO_ROLE = "No Role"
    UNSPECIFIED = "Unspecified"

    @property
    def is_dance_role(self) -> bool:
        return self in (Role.LEADER, Role.FOLLOWER)

    @property
    def column_value(self) -> str:
        # attendance tables store an empty string for roleless rows
        return self.value if self.is_dance_role else ""


@dataclass(frozen=True)
class ClassificationResult:
    class_name: ClassName
    term: str | None = None
    block: Block = Block.NONE
    role: Role = Role.UNSPECIFIED
    is_free: bool = False
    is_bundle: bool = False

    @property
    def is_known(self) -> bool:
        return self.class_name is not ClassName.UNKNOWN

    @property
    def is_solo(self) -> bool:
        return self.class_name in SOLO_CLASSES

    @property
    def is_level(self) -> bool:
        return self.class_name in LEVEL_CLASSES


UNKNOWN = ClassificationResult(class_name=ClassName.UNKNOWN)
