"""Component Library - SQLite persistence for components, price history and quotes.

Usage:
    from component_library import SQLiteComponentRepository

    repo = SQLiteComponentRepository("component_library.db")
    repo.init_db()
    for component in repo.list_components():
        print(component.name, component.unit_cost_nis)
"""

from component_library.db import (
    DEFAULT_DB_PATH,
    SQLiteComponentRepository,
    init_component_library_db,
    create_component,
    update_component_prices,
    get_component,
    list_components,
    clear_current_price_flag,
    append_price_history,
    record_current_price,
    get_price_history,
    get_current_price,
    create_quote_record,
    get_quote_record,
)

__all__ = [
    "DEFAULT_DB_PATH",
    "SQLiteComponentRepository",
    "init_component_library_db",
    "create_component",
    "update_component_prices",
    "get_component",
    "list_components",
    "clear_current_price_flag",
    "append_price_history",
    "record_current_price",
    "get_price_history",
    "get_current_price",
    "create_quote_record",
    "get_quote_record",
]
