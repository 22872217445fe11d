# Shared utilities package
from .config import Config, Settings, get_config, get_settings, init_config, reload_config
from .errors import (
    BackendUnavailable,
    BranchAlreadyExists,
    BranchNotFound,
    ComponentExists,
    ComponentNotFound,
    ConceptNotFoundInIndex,
    CycleDetected,
    IndexInvariantViolation,
    InvalidPage,
    TermQueryError,
    UnsupportedConstraint,
)

__all__ = [
    "Config",
    "Settings",
    "get_config",
    "get_settings",
    "init_config",
    "reload_config",
    "TermQueryError",
    "BranchNotFound",
    "BranchAlreadyExists",
    "ConceptNotFoundInIndex",
    "IndexInvariantViolation",
    "CycleDetected",
    "UnsupportedConstraint",
    "BackendUnavailable",
    "ComponentExists",
    "ComponentNotFound",
    "InvalidPage",
]
