"""
LB Admin module.

The lbctl command line tool for the local cluster store.
"""
