"""System Map Auditor: architecture-consistency checks for TypeScript codebases."""

__version__ = "0.3.0"
