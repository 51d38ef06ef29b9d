"""Orchestrator value objects."""

import re
import uuid
from typing import NewType

# Type-safe identifiers
InstanceId = NewType('InstanceId', str)
PackageName = NewType('PackageName', str)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def create_instance_id(engine: str) -> InstanceId:
    """Create an instance ID.

    Args:
        engine: Engine type value.

    Returns:
        Instance ID.
    """
    return InstanceId(f"{engine}-{uuid.uuid4().hex[:12]}")


def slugify(name: str) -> str:
    """Turn an instance name into a directory-safe slug.

    Args:
        name: Instance name.

    Returns:
        Lowercase slug, "instance" if nothing survives.
    """
    slug = _SLUG_RE.sub("-", name.lower()).strip("-")
    return slug or "instance"


def major_version(version: str) -> str:
    """Get the major component of a version string.

    Args:
        version: Version such as "16.2".

    Returns:
        Major version ("16").
    """
    return version.strip().split(".")[0]


def major_minor_version(version: str) -> str:
    """Get the major.minor components of a version string.

    Args:
        version: Version such as "8.0.36".

    Returns:
        Major.minor version ("8.0"), or the major alone if no minor given.
    """
    parts = version.strip().split(".")
    return ".".join(parts[:2])
