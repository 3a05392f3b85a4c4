"""ioc/ -- Indicator-of-compromise domain: record types, value-format rules,
persistence, and bulk CSV import.

Layer rule: ioc/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or auth/.
"""
