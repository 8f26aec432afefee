"""Metadata helpers attached to recorded artifacts."""

from __future__ import annotations

import platform
from typing import Any

import numpy as np
import scipy

from sweep_platform import __version__


def code_metadata() -> dict[str, Any]:
    return {"package": "sweep_platform", "version": __version__}


def provenance_metadata() -> dict[str, Any]:
    return {
        "python": platform.python_version(),
        "numpy": np.__version__,
        "scipy": scipy.__version__,
    }


__all__ = ["code_metadata", "provenance_metadata"]
