"""
Catalog snapshot types used by the schema comparer.
"""
from dataclasses import dataclass, field
from typing import Dict, List

from .models import TableIdentifier


@dataclass(frozen=True)
class CatalogColumn:
    """One column as reported by the database catalog"""
    name: str
    data_type: str
    nullable: bool = True
    position: int = 0

    def definition(self) -> str:
        """Column type and nullability, without the (driver-quoted) name"""
        null_clause = "" if self.nullable else " NOT NULL"
        return f"{self.data_type}{null_clause}"


@dataclass
class CatalogTable:
    """A base table and its columns in ordinal order"""
    identifier: TableIdentifier
    columns: List[CatalogColumn] = field(default_factory=list)

    def column_map(self) -> Dict[str, CatalogColumn]:
        return {col.name.lower(): col for col in self.columns}
