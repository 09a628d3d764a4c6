from cardtrack.db.database import get_session, init_db
from cardtrack.db.operations import (
    add_or_merge_card,
    card_to_record,
    collection_to_model,
    compare_and_swap_card,
    delete_collection_card,
    get_collection_card,
    insert_card_if_absent,
    list_all_collection_cards,
    list_collection_cards,
    update_collection_card,
)

__all__ = [
    "add_or_merge_card",
    "card_to_record",
    "collection_to_model",
    "compare_and_swap_card",
    "delete_collection_card",
    "get_collection_card",
    "get_session",
    "init_db",
    "insert_card_if_absent",
    "list_all_collection_cards",
    "list_collection_cards",
    "update_collection_card",
]
