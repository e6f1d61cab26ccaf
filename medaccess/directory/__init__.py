"""Read-only views of data owned by other subsystems (clinicians, encounters)."""

from .service import ClinicianDirectory, EncounterRelationshipChecker, RelationshipChecker

__all__ = ["ClinicianDirectory", "EncounterRelationshipChecker", "RelationshipChecker"]
