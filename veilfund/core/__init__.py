"""
VeilFund core: exceptions, clock, canonical encoding and signing keys.
"""
