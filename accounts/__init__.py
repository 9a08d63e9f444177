"""Accounts app: custom User with roles, the role policy table, and JWT
authentication backed by a principal cache.

RolePermission can be reused by other apps importing as:
	from accounts.permissions import RolePermission
"""
