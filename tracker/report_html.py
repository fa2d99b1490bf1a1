# tracker/report_html.py
import os
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .diff import price_change_pct
from .models import ChangeReason, Item, Subscription

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
    keep_trailing_newline=True,
)

EMAIL_THEME = os.getenv("EMAIL_THEME", "dark").strip().lower()
if EMAIL_THEME not in ("light", "dark"):
    EMAIL_THEME = "dark"

THEMES = {
    "light": {
        "page_bg": "#f5f5f5",
        "card_bg": "#ffffff",
        "text_primary": "#202124",
        "text_secondary": "#555",
        "price_increase": "#c62828",
        "price_decrease": "#2e7d32",
        "link_color": "#1a73e8",
    },
    "dark": {
        "page_bg": "#121212",
        "card_bg": "#1E1E1E",
        "text_primary": "#F1F1F1",
        "text_secondary": "#BBBBBB",
        "price_increase": "#FF6B6B",
        "price_decrease": "#4CAF50",
        "link_color": "#8AB4F8",
    },
}

STATUS_LINES = {
    ChangeReason.RESUBSCRIBED: "Price notifications for this listing are active again.",
    ChangeReason.DEACTIVATED: "You will no longer receive price notifications for this listing.",
}


def price_to_str(price: Optional[int]) -> str:
    if price is None or price < 0:
        return "Unavailable"
    return f"{price:,}".replace(",", " ")


def _item_ctx(subscription: Subscription, item: Optional[Item]) -> dict:
    return {
        "item_id": subscription.item_id,
        "item_url": item.url if item else "",
        "price_str": price_to_str(item.price if item else None),
    }


def build_confirmation_text(
    subscription: Subscription, item: Optional[Item], confirmation_url: str
) -> str:
    template = env.get_template("confirmation.txt")
    return template.render(confirmation_url=confirmation_url, **_item_ctx(subscription, item))


def build_confirmation_html(
    subscription: Subscription, item: Optional[Item], confirmation_url: str
) -> str:
    template = env.get_template("confirmation.html")
    return template.render(
        confirmation_url=confirmation_url,
        colors=THEMES[EMAIL_THEME],
        **_item_ctx(subscription, item),
    )


def build_status_text(
    subscription: Subscription, item: Optional[Item], reason: ChangeReason
) -> str:
    template = env.get_template("status.txt")
    return template.render(status_line=STATUS_LINES[reason], **_item_ctx(subscription, item))


def _price_change_ctx(item: Item, before: int, after: int) -> dict:
    pct = price_change_pct(before, after)
    pct_str = ""
    if pct is not None:
        sign = "+" if pct > 0 else "-"
        pct_str = f"({sign}{abs(pct):.1f}%)"
    return {
        "item_id": item.id,
        "item_url": item.url,
        "before_str": price_to_str(before),
        "after_str": price_to_str(after),
        "pct_str": pct_str,
        "went_up": pct is not None and pct > 0,
    }


def build_price_change_text(item: Item, before: int, after: int) -> str:
    template = env.get_template("price_change.txt")
    return template.render(**_price_change_ctx(item, before, after))


def build_price_change_html(item: Item, before: int, after: int) -> str:
    template = env.get_template("price_change.html")
    ctx = _price_change_ctx(item, before, after)
    colors = THEMES[EMAIL_THEME]
    color = colors["price_increase"] if ctx["went_up"] else colors["price_decrease"]
    return template.render(colors=colors, color=color, **ctx)
