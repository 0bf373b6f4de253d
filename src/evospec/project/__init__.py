"""Project scaffolding for new EvoSpec projects."""

from .scaffold import InitOptions, InitResult, ProjectInitializer, init_project
from .templates import generate_template, spec_filename

__all__ = [
    "InitOptions",
    "InitResult",
    "ProjectInitializer",
    "init_project",
    "generate_template",
    "spec_filename",
]
