"""
Interface layer package.

Contains the operator command-line interface.
"""
