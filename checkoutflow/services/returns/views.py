"""Minimal HTML for the return page: a self-refreshing wait and an error."""

from html import escape

from checkoutflow.services.catalog.products import PRODUCTS

_PAGE = """<!doctype html>
<html lang="{lang}">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
{head}<title>{title}</title>
</head>
<body>
<main>
<h1>{title}</h1>
<p>{message}</p>
{extra}</main>
</body>
</html>
"""

_COPY = {
    "processing": {
        "ua": ("Перевіряємо оплату", "Зачекайте кілька секунд, сторінка оновиться автоматично."),
        "en": ("Checking your payment", "Please wait a few seconds, this page refreshes automatically."),
    },
    "error": {
        "ua": ("Не вдалося знайти замовлення", "Посилання не містить номера замовлення."),
        "en": ("Order not found", "The return link does not carry an order reference."),
    },
}


def _copy(kind: str, locale: str) -> tuple[str, str]:
    texts = _COPY[kind]
    return texts.get(locale, texts["en"])


def processing_page(refresh_url: str, refresh_seconds: int, product: str, locale: str = "en") -> str:
    title, message = _copy("processing", locale)
    url = escape(refresh_url, quote=True)
    head = f'<meta http-equiv="refresh" content="{int(refresh_seconds)};url={url}">\n'
    name = PRODUCTS[product].copy_for(locale).heading if product in PRODUCTS else ""
    extra = f"<p>{escape(name)}</p>\n" if name else ""
    extra += f'<p><a href="{url}">&#8635;</a></p>\n'
    return _PAGE.format(lang=locale, head=head, title=escape(title), message=escape(message), extra=extra)


def error_page(locale: str = "en") -> str:
    title, message = _copy("error", locale)
    return _PAGE.format(lang=locale, head="", title=escape(title), message=escape(message), extra="")
