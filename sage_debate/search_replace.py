"""Parser for the SEARCH/REPLACE/END edit blocks used by code reviews."""

import re
from dataclasses import dataclass, field

_BLOCK_RE = re.compile(r"SEARCH\s*([\s\S]+?)\s*REPLACE\s*([\s\S]*?)\s*END")


@dataclass(frozen=True)
class SearchReplaceBlock:
    search: str
    replace: str


@dataclass(frozen=True)
class ParseResult:
    valid: bool
    blocks: list[SearchReplaceBlock] = field(default_factory=list)
    error: str | None = None


def parse_search_replace(text: str) -> ParseResult:
    """Extract every SEARCH/REPLACE/END block from ``text``.

    Prose outside the blocks is allowed. The result is invalid when no block is
    found or when a block's SEARCH section is empty.
    """
    blocks = [
        SearchReplaceBlock(search=m.group(1).strip(), replace=m.group(2).strip())
        for m in _BLOCK_RE.finditer(text)
    ]
    if not blocks:
        return ParseResult(valid=False, error="No SEARCH/REPLACE/END blocks found.")

    for i, block in enumerate(blocks, start=1):
        if not block.search:
            return ParseResult(
                valid=False,
                blocks=blocks,
                error=f"Block #{i} has an empty SEARCH section.",
            )
    return ParseResult(valid=True, blocks=blocks)
