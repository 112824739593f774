"""
Permission policy feature module.

Profile-scoped policy engine: subjects (users, groups, roles) are allowed or
denied wildcard action patterns over resource patterns, with deny overriding
allow.
"""
