"""Access-control policy for App CRs (actor whitelists, app/catalog/namespace blacklists).

The inspector is built once from the controller configuration and is read-only
afterwards, so it can be shared by every request without locking.
"""
