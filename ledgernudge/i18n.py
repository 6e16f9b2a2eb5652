"""Internationalization module - provides t("key") for translated strings.

All user-facing notification text must use t("key") to support multiple
languages (EN/RO). Add new translations to _TRANSLATIONS with both values.
"""
from typing import Dict

_current_language: str = "en"

LANGUAGES: Dict[str, Dict[str, str]] = {
    "en": {"name": "English", "flag": "🇺🇸", "code": "EN"},
    "ro": {"name": "Română", "flag": "🇷🇴", "code": "RO"},
}

_TRANSLATIONS: Dict[str, Dict[str, str]] = {
    "reminder_title": {"en": "Quick check-in", "ro": "Verificare rapidă"},
    "reminder_body": {
        "en": "Log today's spending. It takes 10 seconds.",
        "ro": "Notează cheltuielile de azi. Durează 10 secunde.",
    },
    "reminder_channel_name": {"en": "Expense reminders", "ro": "Mementouri pentru cheltuieli"},
    "reminder_channel_description": {
        "en": "Daily reminder to log expenses",
        "ro": "Memento zilnic pentru a nota cheltuielile",
    },
    "app_name": {"en": "LedgerNudge", "ro": "LedgerNudge"},
}


def get_language() -> str:
    """Get the current language code."""
    return _current_language


def set_language(lang: str) -> None:
    """Set the current language. Unknown codes are ignored."""
    global _current_language
    if lang in LANGUAGES:
        _current_language = lang


def t(key: str) -> str:
    """Get translated string for the given key.

    Falls back to English if translation not found for current language.
    Falls back to the key itself if not found in any language.
    """
    if key not in _TRANSLATIONS:
        return key

    translations = _TRANSLATIONS[key]
    if _current_language in translations:
        return translations[_current_language]
    return translations.get("en", key)
