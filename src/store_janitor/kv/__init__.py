from .janitor import IndexConsistencyJanitor
from .keys import DocumentKeyspace, JobKeyspace

__all__ = ["IndexConsistencyJanitor", "DocumentKeyspace", "JobKeyspace"]
