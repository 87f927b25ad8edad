"""
Flat output row types shared by the formatters and the CSV sink
"""

from typing import Any, Dict, NamedTuple


class Column(NamedTuple):
    """One CSV column: the row key and the header title"""
    key: str
    title: str


# Column key -> cell value. Keys missing from a row render as empty cells.
FormattedRow = Dict[str, Any]
