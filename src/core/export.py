"""
CSV export for the tax-import file.

Rows are written through a pandas DataFrame with the fixed 10-column header.
Minimal quoting applies: fields containing the delimiter, a quote or a
newline are quoted and embedded quotes doubled.
"""

import io
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd

from src.core.models import AccountingRow, RowKind
from src.core.rows import short_address
from src.decimal_utils import format_decimal, normalize_currency_code
from src.utils.constants import CSV_HEADER


def rows_to_frame(rows: Iterable[AccountingRow]) -> pd.DataFrame:
    return pd.DataFrame([r.to_record() for r in rows], columns=CSV_HEADER, dtype=str)


def rows_to_csv(rows: Iterable[AccountingRow]) -> str:
    return rows_to_frame(rows).to_csv(index=False, lineterminator='\n')


def write_csv(rows: Iterable[AccountingRow], path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows_to_frame(rows).to_csv(path, index=False, lineterminator='\n', encoding='utf-8')
    return path


def read_csv(source) -> List[AccountingRow]:
    """Parse an exported file (path or CSV text) back into rows; ``unix_time`` is not recoverable."""
    if isinstance(source, str) and '\n' in source:
        source = io.StringIO(source)
    df = pd.read_csv(source, dtype=str, keep_default_na=False)
    rows = []
    for record in df[CSV_HEADER].itertuples(index=False, name=None):
        ts, kind, a_in, c_in, a_out, c_out, fee, fee_cur, market, note = record
        rows.append(AccountingRow(
            timestamp=ts, kind=RowKind(kind), amount_in=a_in, currency_in=c_in,
            amount_out=a_out, currency_out=c_out, fee=fee, fee_currency=fee_cur,
            market=market, note=note,
        ))
    return rows


def wallet_tag(address: str, wallet_name: Optional[str] = None) -> str:
    if wallet_name and wallet_name.strip():
        return wallet_name.strip()
    return short_address(address)


def tag_notes(rows: Iterable[AccountingRow], address: str, wallet_name: Optional[str] = None) -> List[AccountingRow]:
    tag = wallet_tag(address, wallet_name)
    return [r.with_changes(note=f"{tag} {r.note}") for r in rows]


def apply_overrides(rows: Iterable[AccountingRow], currency_map: Optional[Dict[str, str]] = None,
                    market_map: Optional[Dict[str, str]] = None) -> List[AccountingRow]:
    """
    Rename currencies and markets by exact match.

    Currency keys and values are normalized with the currency-code rule first,
    so 'usdc' and 'USDC' address the same code. Market keys match verbatim.
    """
    currencies = {}
    for key, value in (currency_map or {}).items():
        src, dst = normalize_currency_code(key), normalize_currency_code(value)
        if src and dst:
            currencies[src] = dst
    markets = dict(market_map or {})
    if not currencies and not markets:
        return list(rows)

    out = []
    for row in rows:
        changes = {}
        if row.currency_in and row.currency_in in currencies:
            changes['currency_in'] = currencies[row.currency_in]
        if row.currency_out and row.currency_out in currencies:
            changes['currency_out'] = currencies[row.currency_out]
        if row.market and row.market in markets:
            changes['market'] = markets[row.market]
        out.append(row.with_changes(**changes) if changes else row)
    return out


INCOME_REPORT_COLUMNS = ['Tidspunkt', 'Valuta', 'Mengde', 'Kurs', 'Verdi', 'Notat']


def income_report(rows: Iterable[AccountingRow], rates: Dict[tuple, object], quote: str) -> pd.DataFrame:
    """
    Value every Inntekt row in ``quote``.

    ``rates`` maps (currency, 'YYYY-MM-DD') to a Decimal rate; rows without a
    rate keep empty rate and value fields.
    """
    records = []
    for row in rows:
        if row.kind != RowKind.INCOME or not row.currency_in:
            continue
        rate = rates.get((row.currency_in, row.timestamp[:10]))
        value = format_decimal(row.inbound * rate) if rate is not None else ''
        records.append([
            row.timestamp, row.currency_in, row.amount_in,
            format_decimal(rate) if rate is not None else '', value, row.note,
        ])
    frame = pd.DataFrame(records, columns=INCOME_REPORT_COLUMNS, dtype=str)
    frame.attrs['quote'] = quote.upper()
    return frame
