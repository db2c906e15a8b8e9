from reviewsync.stores.entity_store import EntityStore, FetchResult, MutationResult
from reviewsync.stores.issues import IssueStore
from reviewsync.stores.labels import LabelStore
from reviewsync.stores.pull_requests import PullRequestStore

__all__ = [
    "EntityStore",
    "FetchResult",
    "MutationResult",
    "IssueStore",
    "LabelStore",
    "PullRequestStore",
]
