"""auth/ -- Authentication and authorization package for the IOC registry.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or ioc/.
api/ imports from auth/, not the other way around.
"""
