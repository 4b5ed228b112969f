"""
Operator tools for the realm core.

- admin_cli: initialize a replica, register users, onboard vendors, inspect
  memberships and authorization decisions
"""
