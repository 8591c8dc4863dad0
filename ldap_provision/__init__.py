"""
LDAP Provision - Create organizational trees and user accounts in an LDAP directory.

This package reads JSON descriptor files and provisions their entries into a
directory service, updating user accounts that already exist.
"""

__version__ = "1.0.0"
__author__ = "LDAP Provision Team"
