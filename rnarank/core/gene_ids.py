"""Decomposition of compound gene identifiers.

Count tables exported from TCGA-style pipelines label genes as
``SYMBOL|ENTREZ_ID`` (e.g. ``TP53|7157``; unannotated genes appear as
``?|100130426``). The statistical core treats gene ids as opaque keys; these
helpers run before it (in the loader) or after it (in exporters).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import NamedTuple

MISSING_SYMBOLS = frozenset({"", "?", "NA"})


class GeneId(NamedTuple):
    """Parts of a compound gene identifier."""

    symbol: str | None
    entrez_id: str | None


def split_gene_id(gene_id: str, sep: str = "|") -> GeneId:
    """
    Split a compound ``symbol|entrez`` identifier.

    Parameters
    ----------
    gene_id : str
        Identifier to split.
    sep : str, default="|"
        Field separator.

    Returns
    -------
    GeneId
        ``symbol`` is None when the symbol field is empty, ``"?"`` or
        ``"NA"``. ``entrez_id`` is None when the identifier has no
        separator or the field is empty.

    Examples
    --------
    >>> split_gene_id("TP53|7157")
    GeneId(symbol='TP53', entrez_id='7157')
    >>> split_gene_id("?|100130426")
    GeneId(symbol=None, entrez_id='100130426')
    >>> split_gene_id("ENSG00000141510")
    GeneId(symbol='ENSG00000141510', entrez_id=None)
    """
    symbol, found, rest = gene_id.partition(sep)
    symbol = symbol.strip()
    entrez = rest.strip() if found else ""
    return GeneId(
        symbol=None if symbol in MISSING_SYMBOLS else symbol,
        entrez_id=entrez or None,
    )


def gene_symbols(gene_ids: Iterable[str], sep: str = "|") -> list[str]:
    """Symbol of each id, falling back to the full id when the symbol is missing."""
    out = []
    for gid in gene_ids:
        symbol = split_gene_id(gid, sep=sep).symbol
        out.append(symbol if symbol is not None else gid)
    return out


@dataclass(frozen=True)
class GeneAnnotation(Mapping[str, str]):
    """
    Read-only gene id to symbol lookup.

    The lookup is built explicitly and handed to whoever needs it; there is
    no module-level cache.

    Parameters
    ----------
    symbols : Mapping[str, str]
        ``{gene_id: symbol}``.
    """

    symbols: Mapping[str, str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbols", MappingProxyType(dict(self.symbols)))

    @classmethod
    def from_gene_ids(cls, gene_ids: Iterable[str], sep: str = "|") -> GeneAnnotation:
        """Build a lookup by decomposing compound identifiers; ids without a symbol are skipped."""
        table = {}
        for gid in gene_ids:
            symbol = split_gene_id(gid, sep=sep).symbol
            if symbol is not None:
                table[gid] = symbol
        return cls(table)

    def symbol(self, gene_id: str) -> str:
        """Symbol for ``gene_id``, or the id itself when it is not annotated."""
        return self.symbols.get(gene_id, gene_id)

    def __getitem__(self, key: str) -> str:
        return self.symbols[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.symbols)

    def __len__(self) -> int:
        return len(self.symbols)
