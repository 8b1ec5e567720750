"""auth/ -- Authentication and identity provisioning for the college information system.

Layer rule: auth/ imports only stdlib, third-party libraries and (for type
hints) core/. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
