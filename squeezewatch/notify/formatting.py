"""Telegram alert text — HTML, every dynamic value escaped."""

from html import escape

from squeezewatch.strategy.models import CALL


def symbol_hashtag(symbol: str) -> str:
    """``"frxEURUSD"`` → ``"#frxEUR"``; dots are dropped first."""
    return "#" + symbol.replace(".", "")[:6]


def entry_text(minutes: int) -> str:
    return "in 1 minute" if minutes == 1 else f"in {minutes} minutes"


def build_alert_message(state, analysis, stats) -> str:
    """Render the READY alert for one instrument.

    Args:
        state: ``InstrumentState`` of the instrument.
        analysis: The ``Analysis`` that triggered the alert.
        stats: ``PerformanceStats`` shown in the footer.
    """
    instrument = state.instrument
    direction = "CALL (buy) 📈" if analysis.direction == CALL else "PUT (sell) 📉"
    reasons = "\n".join(
        f"{i}. {escape(reason)}" for i, reason in enumerate(analysis.reasons, start=1)
    ) or "-"

    warnings = []
    if analysis.session_filtered:
        warnings.append("⚠️ <b>Note:</b> outside the main trading sessions")
    if analysis.news_filtered:
        warnings.append("⚠️ <b>Warning:</b> high-impact news nearby")

    lines = [
        "🎯 <b>Trading signal</b>",
        "",
        f"📊 <b>{escape(instrument.display_name)} ({escape(instrument.symbol)})</b>",
        f"🏪 Market: {escape(instrument.market)}",
        f"⏰ Session: {'off-peak' if analysis.session_filtered else 'active'}",
        "",
        f"🚀 <b>Direction: {direction}</b>",
        f"⏰ <b>Entry: {entry_text(analysis.entry_minutes)}</b>",
        "⏳ Suggested duration: 1-2 minutes",
        f"📈 Confidence: {analysis.confidence}%",
        "",
        "🔍 <b>Pattern:</b>",
        "✅ In compression zone" if analysis.compression else "❌ No compression",
        "⚠️ Recent fakeouts" if analysis.fakeout_alert else "✅ No recent fakeouts",
        f"Bollinger width: {analysis.bollinger_width * 100:.2f}%",
        f"ATR: {analysis.atr_pct:.3f}%",
        "",
        "📋 <b>Reasons:</b>",
        reasons,
        "",
        "💰 <b>Technicals:</b>",
        f"Price: {analysis.price}",
        f"RSI: {analysis.rsi}",
        f"SMA20: {analysis.sma20:.5f}",
        f"SMA50: {analysis.sma50:.5f}",
        f"MACD: {analysis.macd_histogram:.6f}",
    ]
    if warnings:
        lines += [""] + warnings
    lines += [
        "",
        "⚠️ <b>Execution:</b>",
        "1. Wait for the next candle to open",
        "2. Skip the signal if you are more than 30 seconds late",
        "3. Use a stop of 1.5x the target",
        "4. Automated signal: confirm visually",
        "",
        "📊 <b>System stats:</b>",
        f"• {stats.signals_sent} signals sent",
        f"• {stats.successful_signals} successful",
        f"• Win rate: {stats.win_rate * 100:.1f}%",
        f"• {stats.compressions_found} compression zones seen",
        "",
        escape(symbol_hashtag(instrument.symbol)),
    ]
    return "\n".join(lines)
