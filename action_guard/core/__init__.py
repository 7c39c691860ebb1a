"""
Core domain models, collaborator interfaces and the uncertainty policy.
"""
