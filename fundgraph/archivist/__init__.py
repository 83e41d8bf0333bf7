"""Relational storage, round grouping and the graph projection."""

from .models import Feed, Article, FundingMention
from .database import get_session, init_db, close_db, check_db
from .grouper import CanonicalRound, MentionRecord, group_mentions, sort_rounds
from .graph import (
    EntityType,
    LOCKABLE_FIELDS,
    Neo4jGraphStore,
    get_graph_store,
    close_graph_store,
    to_native,
)
from .graph_sync import (
    ArticleRef,
    GraphSyncError,
    GraphSyncResult,
    GraphSyncSummary,
    commit_round,
    set_field_lock,
    sync_all_rounds,
    clear_rounds,
)

__all__ = [
    "Feed",
    "Article",
    "FundingMention",
    "get_session",
    "init_db",
    "close_db",
    "check_db",
    "CanonicalRound",
    "MentionRecord",
    "group_mentions",
    "sort_rounds",
    "EntityType",
    "LOCKABLE_FIELDS",
    "Neo4jGraphStore",
    "get_graph_store",
    "close_graph_store",
    "to_native",
    "ArticleRef",
    "GraphSyncError",
    "GraphSyncResult",
    "GraphSyncSummary",
    "commit_round",
    "set_field_lock",
    "sync_all_rounds",
    "clear_rounds",
]
