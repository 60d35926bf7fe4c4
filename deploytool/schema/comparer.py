"""
Capability interface for schema differencing and publishing.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.models import ComparisonOutcome, DatabaseEndpoint


class SchemaComparer(ABC):
    """
    Compares a source schema against a target and applies or renders the changes.

    Implementations report failure by returning None (compare, generate_script)
    or False (publish) rather than raising.
    """

    @abstractmethod
    async def compare(
        self,
        source: DatabaseEndpoint,
        target: DatabaseEndpoint,
        excluded_tables: List[str]
    ) -> Optional[ComparisonOutcome]:
        """
        Compute structural differences between source and target.

        Args:
            source: Authoritative schema
            target: Schema to bring in line with the source
            excluded_tables: Qualified table names to leave out of the comparison

        Returns:
            ComparisonOutcome, or None if the comparison could not be made
        """
        pass

    @abstractmethod
    async def publish(self, outcome: ComparisonOutcome) -> bool:
        """Apply the changes of a previous comparison to its target"""
        pass

    @abstractmethod
    async def generate_script(self, outcome: ComparisonOutcome, target_name: str) -> Optional[str]:
        """Render the changes of a previous comparison as a script without applying them"""
        pass
