"""
Business modules built on nc_kernel.

Each module is thin glue: a service facade that composes kernel services
and selectors and owns the transaction boundary of every public operation.
"""
