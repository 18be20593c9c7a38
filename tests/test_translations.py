import unittest

from starlette.requests import Request

from translations import DEFAULT_LOCALE, detect_locale, normalize_locale, t, text_direction


def _request(headers=None) -> Request:
    raw = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw, "query_string": b""})


class TranslationTests(unittest.TestCase):
    def test_nested_key_lookup(self) -> None:
        self.assertEqual(t("de", "errors.insufficientCredits"), "Nicht genügend Guthaben")
        self.assertEqual(t("ar", "errors.insufficientCredits"), "رصيد غير كافٍ")

    def test_missing_key_returns_key(self) -> None:
        self.assertEqual(t("de", "errors.doesNotExist"), "errors.doesNotExist")
        self.assertEqual(t("de", "errors"), "errors")

    def test_unknown_locale_uses_default_catalogue(self) -> None:
        self.assertEqual(t("fr", "app.tagline"), t(DEFAULT_LOCALE, "app.tagline"))

    def test_normalize_locale(self) -> None:
        self.assertEqual(normalize_locale("de-DE"), "de")
        self.assertEqual(normalize_locale("AR_sy"), "ar")
        self.assertEqual(normalize_locale("en"), DEFAULT_LOCALE)
        self.assertEqual(normalize_locale(None), DEFAULT_LOCALE)

    def test_detect_locale_prefers_cookie(self) -> None:
        request = _request({"cookie": "locale=de", "accept-language": "ar"})
        self.assertEqual(detect_locale(request), "de")

    def test_detect_locale_from_accept_language(self) -> None:
        request = _request({"accept-language": "en-US,en;q=0.9,de;q=0.8"})
        self.assertEqual(detect_locale(request), "de")

    def test_detect_locale_default(self) -> None:
        self.assertEqual(detect_locale(_request()), DEFAULT_LOCALE)

    def test_text_direction(self) -> None:
        self.assertEqual(text_direction("ar"), "rtl")
        self.assertEqual(text_direction("de"), "ltr")


if __name__ == "__main__":
    unittest.main()
