"""Technical indicator calculations."""

import math

import numpy as np
import pandas as pd


def calculate_sma(prices: pd.Series, period: int) -> pd.Series:
    """
    Calculate Simple Moving Average.

    Args:
        prices: Price series (typically close prices)
        period: Number of periods for the average

    Returns:
        SMA series
    """
    return prices.rolling(window=period, min_periods=period).mean()


def calculate_rsi(prices: pd.Series, period: int = 14) -> pd.Series:
    """
    Calculate Relative Strength Index.

    Uses Wilder's smoothing method (exponential moving average).

    Args:
        prices: Price series (typically close prices)
        period: RSI period (default: 14)

    Returns:
        RSI series (0-100 scale)
    """
    delta = prices.diff()

    gain = delta.where(delta > 0, 0.0)
    loss = (-delta).where(delta < 0, 0.0)

    # Wilder's smoothing: alpha = 1/period
    avg_gain = gain.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()
    avg_loss = loss.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()

    rs = avg_gain / avg_loss
    rsi = 100 - (100 / (1 + rs))

    # Handle division by zero (when avg_loss is 0)
    rsi = rsi.replace([np.inf, -np.inf], 100)

    return rsi


def calculate_realized_volatility(prices: pd.Series, window: int) -> pd.Series:
    """
    Calculate rolling realized volatility of daily log returns.

    Population standard deviation, not annualized. The first valid value
    appears at index ``window`` (one return is lost to differencing).

    Args:
        prices: Close price series
        window: Rolling window in days

    Returns:
        Volatility series (decimal, e.g. 0.03 = 3% daily)
    """
    log_returns = np.log(prices / prices.shift(1))
    return log_returns.rolling(window=window, min_periods=window).std(ddof=0)


def calculate_slope(values: pd.Series) -> float | None:
    """
    Calculate least-squares slope per step.

    Args:
        values: Ordered values (NaN dropped)

    Returns:
        Slope in value units per step, or None with fewer than 2 points
    """
    clean = values.dropna()
    if len(clean) < 2:
        return None
    x = np.arange(len(clean), dtype=float)
    slope, _ = np.polyfit(x, clean.to_numpy(dtype=float), 1)
    return float(slope)


def percentile_rank(value: float, history: pd.Series) -> float:
    """
    Percentile rank (0-100) of value within history.

    Counts strictly smaller observations, so the minimum ranks at 0.
    Empty history ranks at 50.
    """
    clean = history.dropna()
    if len(clean) == 0 or pd.isna(value):
        return 50.0
    below = int((clean < value).sum())
    return below / len(clean) * 100


def check_higher_low(low: pd.Series, window_days: int) -> tuple[bool | None, float | None, float | None]:
    """
    Compare the lowest low of the latest window against the window before it.

    Args:
        low: Low price series
        window_days: Size of each comparison window

    Returns:
        Tuple of (higher_low, recent_low, prior_low); all None if fewer than
        2 * window_days observations
    """
    clean = low.dropna().reset_index(drop=True)
    if window_days <= 0 or len(clean) < window_days * 2:
        return None, None, None

    prior_low = float(clean.iloc[-2 * window_days:-window_days].min())
    recent_low = float(clean.iloc[-window_days:].min())
    return recent_low > prior_low, recent_low, prior_low


def calculate_returns(prices: pd.Series, periods: int) -> float | None:
    """
    Calculate return over a specific number of periods.

    Args:
        prices: Price series
        periods: Number of periods to look back

    Returns:
        Return as decimal (0.15 = 15%), or None if insufficient data
    """
    if len(prices) < periods + 1:
        return None

    current = prices.iloc[-1]
    past = prices.iloc[-periods - 1]

    if pd.isna(current) or pd.isna(past) or past == 0:
        return None

    return (current - past) / past


def annualize_volatility(daily_vol: float | None, periods_per_year: int = 365) -> float | None:
    """Annualize a daily volatility figure. Crypto trades every day."""
    if daily_vol is None or pd.isna(daily_vol):
        return None
    return float(daily_vol) * math.sqrt(periods_per_year)
