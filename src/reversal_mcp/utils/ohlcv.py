"""OHLCV data standardization utilities."""

from dataclasses import dataclass
from io import StringIO

import pandas as pd

_EPOCH = pd.Timestamp("1970-01-01", tz="UTC")

CANONICAL_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class PriceCandle:
    """One daily candle. Timestamp is the bar open in ms since epoch (UTC)."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


def standardize_ohlcv(df: pd.DataFrame) -> pd.DataFrame:
    """
    Standardize OHLCV to consistent schema.

    Output columns (always, in this order): timestamp, open, high, low, close, volume
    Rows are ascending by timestamp with duplicate timestamps removed (last wins).

    Args:
        df: Raw DataFrame from yfinance (DatetimeIndex) or an already flat frame

    Returns:
        Standardized DataFrame with consistent schema
    """
    df = df.copy()

    # Handle multi-index from yf.download (ticker level on columns)
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)

    # auto_adjust=True already folds adjustments into OHLC
    if "Adj Close" in df.columns:
        df = df.drop(columns=["Adj Close"])

    df.columns = [str(c).lower() for c in df.columns]

    if "timestamp" not in df.columns:
        df = df.reset_index()
        date_cols = [c for c in df.columns if str(c).lower() in ("date", "datetime", "index")]
        if date_cols:
            dates = pd.to_datetime(df[date_cols[0]], utc=True)
            df["timestamp"] = (dates - _EPOCH) // pd.Timedelta(milliseconds=1)

    for col in CANONICAL_COLUMNS:
        if col not in df.columns:
            df[col] = pd.NA

    df = df[CANONICAL_COLUMNS]
    df = df.dropna(subset=["timestamp"]).copy()
    df["timestamp"] = df["timestamp"].astype("int64")
    for col in CANONICAL_COLUMNS[1:]:
        df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)

    df = df.drop_duplicates(subset="timestamp", keep="last")
    df = df.sort_values("timestamp", kind="mergesort").reset_index(drop=True)

    return df


def df_to_candles(df: pd.DataFrame) -> list[PriceCandle]:
    """Convert a standardized frame to immutable candles."""
    return [
        PriceCandle(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def df_to_csv(df: pd.DataFrame) -> str:
    """Convert to CSV string for cache/resource."""
    return df.to_csv(index=False)


def csv_to_df(csv_text: str) -> pd.DataFrame:
    """Parse cached CSV back into the canonical schema."""
    return standardize_ohlcv(pd.read_csv(StringIO(csv_text)))
