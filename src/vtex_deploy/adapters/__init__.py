"""Boundary implementations over the vtex toolbelt, git and the project tree."""

from __future__ import annotations

from vtex_deploy.adapters.gates import ProjectValidationGate
from vtex_deploy.adapters.git import GitVersionControl
from vtex_deploy.adapters.vtex import VTEXClient

__all__: list[str] = ["GitVersionControl", "ProjectValidationGate", "VTEXClient"]
