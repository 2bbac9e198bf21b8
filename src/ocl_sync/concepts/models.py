"""Domain objects for dictionary concepts and their names."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4


class ConceptNameType(str, Enum):
    """Name types; every type except ``INDEX_TERM`` identifies a concept."""

    FULLY_SPECIFIED = "FULLY_SPECIFIED"
    SHORT = "SHORT"
    INDEX_TERM = "INDEX_TERM"


@dataclass
class ConceptName:
    name: str
    locale: str
    name_type: ConceptNameType | None = None
    uuid: str = field(default_factory=lambda: str(uuid4()))
    concept_uuid: str | None = None

    def is_index_term(self) -> bool:
        return self.name_type is ConceptNameType.INDEX_TERM

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.locale)


@dataclass
class Concept:
    uuid: str = field(default_factory=lambda: str(uuid4()))
    concept_class: str | None = None
    datatype: str | None = None
    retired: bool = False
    names: list[ConceptName] = field(default_factory=list)

    def add_name(self, name: ConceptName) -> ConceptName:
        name.concept_uuid = self.uuid
        self.names.append(name)
        return name
