"""Duplicate concept name resolution for imported concepts.

A remote dictionary and local customizations can coin the same label for
different concepts. Local names that identify a concept (anything but an
index term) must stay unique per locale, so an incoming name that collides
with another concept's identifying name is demoted to an index term instead
of failing the whole concept.
"""

from __future__ import annotations

import logging
from typing import Protocol

from ocl_sync.concepts.models import Concept, ConceptName, ConceptNameType

logger = logging.getLogger(__name__)


class NameIndex(Protocol):
    def find_names(self, name: str, locale: str) -> list[ConceptName]: ...


class DuplicateNameResolver:
    def __init__(self, names: NameIndex) -> None:
        self._names = names

    def change_duplicate_concept_names_to_index_terms(
        self, concept_to_import: Concept
    ) -> list[ConceptName]:
        """Demote clashing names on *concept_to_import* to index terms.

        Text and locale are compared exactly: no case folding and no Unicode
        normalization.

        Returns:
            The demoted names, in the order they appear on the concept.
        """
        demoted: list[ConceptName] = []
        seen: set[tuple[str, str]] = set()

        for name in concept_to_import.names:
            if name.is_index_term():
                continue
            if name.key in seen or self._is_used_by_other_concept(name, concept_to_import.uuid):
                name.name_type = ConceptNameType.INDEX_TERM
                demoted.append(name)
                logger.info(
                    "Changed duplicate name %r (%s) of concept %s to an index term",
                    name.name,
                    name.locale,
                    concept_to_import.uuid,
                )
                continue
            seen.add(name.key)

        return demoted

    def _is_used_by_other_concept(self, name: ConceptName, concept_uuid: str) -> bool:
        for existing in self._names.find_names(name.name, name.locale):
            if existing.is_index_term():
                continue
            if existing.concept_uuid != concept_uuid:
                return True
        return False
