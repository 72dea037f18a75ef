"""auth/ -- Authentication and authorization package for Amlak.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/
for configuration. It does NOT import from api/, ads/, or client/.
api/ imports from auth/, not the other way around.
"""
