from __future__ import annotations

from html import escape
from typing import Optional

from .core import AllowanceBreakdown


def render_allowance_summary(breakdown: Optional[AllowanceBreakdown]) -> str:
    if breakdown is None:
        return (
            '<section class="allowance-summary pending">'
            "<h2>出張旅費概算</h2>"
            "<p>出張期間を入力すると概算が表示されます。</p>"
            "</section>"
        )

    rows = [
        ("出張日当", breakdown.daily_allowance_total),
        ("交通費", breakdown.transportation_total),
        ("宿泊費", breakdown.accommodation_total),
    ]
    items = "".join(f"<tr><th>{label}</th><td>¥{amount:,}</td></tr>" for label, amount in rows)
    items += f'<tr class="total"><th>合計</th><td>¥{breakdown.grand_total:,}</td></tr>'
    if breakdown.preparation_total:
        items += f'<tr class="separate"><th>支度料（別途）</th><td>¥{breakdown.preparation_total:,}</td></tr>'
    return (
        '<section class="allowance-summary">'
        "<h2>出張旅費概算</h2>"
        f"<p>{breakdown.days}日間（{breakdown.nights}泊）</p>"
        f"<table>{items}</table>"
        "</section>"
    )


def render_regulation_print_html(regulation_text: str, title: str = "出張旅費規程") -> str:
    """Print-ready page for a generated regulation text."""
    return (
        "<html>"
        f"<head><title>{escape(title)}</title>"
        "<style>"
        "body { font-family: 'MS Gothic', monospace; font-size: 12px; line-height: 1.6; margin: 20px; }"
        " .content { white-space: pre-line; }"
        "</style></head>"
        f'<body><div class="content">{escape(regulation_text)}</div></body>'
        "</html>"
    )
