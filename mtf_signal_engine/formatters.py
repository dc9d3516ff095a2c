from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Optional

from .models import LONG, SHORT, Signal


def _fmt_ts(ts: int) -> str:
    if not ts:
        return "-"
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    escaped = []
    for ch in str(text):
        if ch in specials:
            escaped.append("\\" + ch)
        else:
            escaped.append(ch)
    return "".join(escaped)


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def _fmt_price(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"{val:.8g}"


def _pct_from(entry: float, level: float) -> float:
    return (level - entry) / entry * 100.0 if entry else 0.0


def _arrow(direction: str) -> str:
    if direction == LONG:
        return "▲"
    if direction == SHORT:
        return "▼"
    return "■"


def format_signal(signal: Signal, cfg, *, parse_mode: Optional[str] = None) -> str:
    """Format a signal for Telegram (HTML or MarkdownV2)."""
    pm = (parse_mode or getattr(cfg, "parse_mode", "HTML") or "HTML").upper()
    pipe = "\\|" if pm == "MARKDOWNV2" else "|"

    rr = signal.risk_reward
    lines = [
        f"{_bold(signal.symbol, pm)}  {pipe}  {_bold(signal.timeframe, pm)}",
        f"{_arrow(signal.direction)} {_bold(signal.direction, pm)} "
        + _escape_text(f"conf {signal.confidence:.0f}% | success {signal.success_probability:.0f}%", pm),
        "",
        _escape_text(f"Bar (UTC): {_fmt_ts(signal.timestamp)}", pm),
        _escape_text(f"Entry: {_fmt_price(signal.entry_price)}", pm),
        _escape_text(
            f"Stop: {_fmt_price(signal.stop_loss)} ({_pct_from(signal.entry_price, signal.stop_loss):+.2f}%)", pm
        ),
        _escape_text(
            f"Target: {_fmt_price(signal.take_profit)} ({_pct_from(signal.entry_price, signal.take_profit):+.2f}%)", pm
        ),
    ]
    if rr is not None:
        lines.append(_escape_text(f"R:R {rr:.2f}", pm))

    if getattr(cfg, "include_indicators", True):
        ind = signal.indicators
        lines.append(_escape_text(
            f"RSI {ind.rsi:.1f} | MACD hist {ind.macd.histogram:+.4g} | ADX {ind.adx.adx:.1f} "
            f"(+DI {ind.adx.plus_di:.1f} / -DI {ind.adx.minus_di:.1f})",
            pm,
        ))
        if signal.structure is not None:
            st = signal.structure
            lines.append(_escape_text(
                f"Structure: {st.regime} {st.bias} {st.strength:.0f} | Volume {st.volume_profile}", pm
            ))
        if ind.supports or ind.resistances:
            sup = ", ".join(_fmt_price(x) for x in ind.supports) or "-"
            res = ", ".join(_fmt_price(x) for x in ind.resistances) or "-"
            lines.append(_escape_text(f"S: {sup} | R: {res}", pm))

    if getattr(cfg, "include_breakdown", False) and signal.score_breakdown:
        lines.append(_escape_text(f"Score {signal.bullish_score:.0f} bull / {signal.bearish_score:.0f} bear:", pm))
        lines.append(_escape_text(signal.score_breakdown, pm))

    footer = (getattr(cfg, "footer", "") or "").strip()
    if footer:
        lines.append("")
        lines.append(_escape_text(footer, pm))

    return "\n".join(lines)
