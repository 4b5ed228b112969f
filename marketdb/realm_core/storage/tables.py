"""
Table definitions for the local replica.

Each table keeps its key and indexed columns as real SQLite columns and the
full record as payload_json. A multi-valued field (product categories) is
indexed through a side table of (key, value) pairs.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..schema import EntityType


@dataclass(frozen=True)
class TableDef:
    """Physical layout of one table.

    Attributes:
        name: Table name
        key: Primary key column
        columns: Indexed columns copied out of the payload
        indexes: Non-unique indexes, each a tuple of columns
        unique: Unique constraints, each a tuple of columns
        multi: Name of a list-valued field indexed in "<name>_<multi>"
    """

    name: str
    key: str
    columns: tuple[str, ...] = ()
    indexes: tuple[tuple[str, ...], ...] = ()
    unique: tuple[tuple[str, ...], ...] = ()
    multi: str | None = None

    @property
    def multi_table(self) -> str:
        return f"{self.name}_{self.multi}"

    def ddl(self) -> str:
        """CREATE statements for this table and its indexes."""
        cols = [f"{self.key} TEXT PRIMARY KEY NOT NULL"]
        cols += [f"{c} TEXT" for c in self.columns]
        cols += [
            "payload_json TEXT NOT NULL DEFAULT '{}'",
            "created_at INTEGER NOT NULL",
            "updated_at INTEGER NOT NULL",
        ]
        for group in self.unique:
            cols.append(f"UNIQUE ({', '.join(group)})")

        statements = [f"CREATE TABLE IF NOT EXISTS {self.name} (\n    " + ",\n    ".join(cols) + "\n);"]
        for group in self.indexes:
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{self.name}_{'_'.join(group)} "
                f"ON {self.name}({', '.join(group)});"
            )
        if self.multi:
            statements.append(
                f"CREATE TABLE IF NOT EXISTS {self.multi_table} (\n"
                f"    {self.key} TEXT NOT NULL,\n"
                f"    value TEXT NOT NULL,\n"
                f"    PRIMARY KEY ({self.key}, value)\n"
                f");"
            )
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{self.multi_table}_value "
                f"ON {self.multi_table}(value, {self.key});"
            )
        return "\n".join(statements)


TABLES: dict[str, TableDef] = {
    "realms": TableDef(
        name="realms",
        key="realm_id",
        columns=("type", "owner_user_id"),
        indexes=(("owner_user_id",),),
    ),
    "members": TableDef(
        name="members",
        key="id",
        columns=("realm_id", "user_id"),
        indexes=(("user_id",),),
        unique=(("realm_id", "user_id"),),
    ),
    "users": TableDef(
        name="users",
        key="id",
        columns=("email", "realm_id"),
        unique=(("email",),),
    ),
    "stores": TableDef(
        name="stores",
        key="id",
        columns=("realm_id", "owner_user_id"),
        indexes=(("owner_user_id",),),
        unique=(("realm_id",),),
    ),
    "products": TableDef(
        name="products",
        key="id",
        columns=("realm_id", "vendor_id", "owner_user_id"),
        indexes=(("realm_id",), ("vendor_id",)),
        multi="categories",
    ),
    "cart_items": TableDef(
        name="cart_items",
        key="id",
        columns=("realm_id", "user_id", "product_id"),
        indexes=(("realm_id",),),
        unique=(("user_id", "product_id"),),
    ),
    "orders": TableDef(
        name="orders",
        key="id",
        columns=("realm_id", "user_id", "vendor_id"),
        indexes=(("realm_id",), ("vendor_id",)),
    ),
}


ENTITY_TABLES: dict[EntityType, str] = {
    EntityType.REALM: "realms",
    EntityType.MEMBER: "members",
    EntityType.USER: "users",
    EntityType.STORE: "stores",
    EntityType.PRODUCT: "products",
    EntityType.CART_ITEM: "cart_items",
    EntityType.ORDER: "orders",
}
