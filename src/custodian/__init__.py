"""Custodian: evidentiary lifecycle and retention engine.

Decides whether a business record may be removed, forces records with
operational or legal history into a preserved terminal state, and purges
safely-deletable records after a retention window.
"""

__version__ = "0.1.0"
