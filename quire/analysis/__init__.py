"""
Quire Analysis.

Static extraction of fixture requests from function signatures.

Components:
- parser: Tree-sitter based signature parsing
"""

from quire.analysis.parser import (
    DestructuringRequiredError,
    FixtureUse,
    ParameterRequest,
    SignatureParser,
    SourceLocation,
    extract_parameters,
    use,
)

__all__ = [
    "DestructuringRequiredError",
    "FixtureUse",
    "ParameterRequest",
    "SignatureParser",
    "SourceLocation",
    "extract_parameters",
    "use",
]
