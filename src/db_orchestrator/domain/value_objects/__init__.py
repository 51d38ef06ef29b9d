"""Value objects for the orchestrator."""

from db_orchestrator.domain.value_objects.identifiers import (
    InstanceId,
    PackageName,
    create_instance_id,
    major_minor_version,
    major_version,
    slugify,
)
from db_orchestrator.domain.value_objects.probe import CheckFailed, Ok, ProbeResult, fold_probe

__all__ = [
    "InstanceId",
    "PackageName",
    "create_instance_id",
    "major_version",
    "major_minor_version",
    "slugify",
    "Ok",
    "CheckFailed",
    "ProbeResult",
    "fold_probe",
]
