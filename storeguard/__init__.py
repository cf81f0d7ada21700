"""StoreGuard: tenant-isolated data access for a multi-store admin backend."""

__version__ = "0.1.0"
