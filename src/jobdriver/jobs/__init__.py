"""Job classes and job loading for jobdriver."""

from __future__ import annotations

from .base import Declaration, Job, get_job_class, list_job_classes, register_job_class
from .loader import instantiate, load_job_file
from .shell import ShellJob

__all__ = [
    "Declaration",
    "Job",
    "ShellJob",
    "get_job_class",
    "instantiate",
    "list_job_classes",
    "load_job_file",
    "register_job_class",
]
