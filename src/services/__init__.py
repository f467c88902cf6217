"""Service layer -- complaint escalation and its collaborators."""
