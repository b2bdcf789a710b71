from faxbridge.repositories.job_store import JobStore

__all__ = ["JobStore"]
