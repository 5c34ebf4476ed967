"""
sessionguard: session and MFA lifecycle core for the management console.

Owns the bearer-token pipeline guard, the connectivity monitor, the
persisted session store, and the MFA challenge / enrollment /
disablement / reset controllers.  Rendering and routing live elsewhere
and drive this package through the services wired in
``sessionguard.services.create_services``.
"""

__version__ = "0.4.0"
