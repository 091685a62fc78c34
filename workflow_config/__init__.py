"""
Workflow configuration: definition documents, validation, engine settings.

Public API:
    parse_workflow_yaml / parse_definition / load_definition_file /
    load_definitions_dir / dump_definition  -- definition documents.
    validate_definition / analyze_definition -- registration-time checks.
    EngineSettings / load_settings           -- host settings.
"""

from workflow_config.loader import (
    dump_definition,
    load_definition_file,
    load_definitions_dir,
    parse_definition,
    parse_workflow_yaml,
)
from workflow_config.settings import EngineSettings, load_settings
from workflow_config.validator import (
    DefinitionValidationResult,
    analyze_definition,
    validate_definition,
)

__all__ = [
    "DefinitionValidationResult",
    "EngineSettings",
    "analyze_definition",
    "dump_definition",
    "load_definition_file",
    "load_definitions_dir",
    "load_settings",
    "parse_definition",
    "parse_workflow_yaml",
    "validate_definition",
]
