"""
Seafood Pricing Package

Cost calculation for seafood-processing jobs (factory rate tables, surcharges and
toggleable charges) and the field-mapping transformation core used by integrations.
"""

__version__ = "1.0.0"
