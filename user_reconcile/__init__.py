"""
User Reconcile - Reconcile user records from an authoritative source into an LDAP directory.

This package compares source user records with their counterparts in a target
directory and reports, or applies, the attribute updates needed to bring the
directory in line with the source.
"""

__version__ = "1.0.0"
__author__ = "User Reconcile Team"
