"""core/ -- Kernel: configuration, error taxonomy, timestamp helpers.

Layer rule: core/ has no reverse dependencies. It imports nothing from
api/, auth/, or ioc/.
"""
