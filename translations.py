"""Arabic/German message catalogue and locale detection."""
import logging
from typing import Any, Dict, Optional

from fastapi import Request

logger = logging.getLogger("formbridge.i18n")

SUPPORTED_LOCALES = ["ar", "de"]
DEFAULT_LOCALE = "ar"
LOCALE_COOKIE = "locale"

MESSAGES: Dict[str, Dict[str, Any]] = {
    "ar": {
        "app": {
            "title": "FormBridge AI",
            "tagline": "عبّئ النماذج الألمانية بسهولة",
            "description": "ارفع صورة النموذج، أجب بالعربية، واحصل على نموذج ألماني معبأ.",
        },
        "features": {
            "form": "تعبئة النماذج",
            "explain": "شرح المستندات",
            "cv": "إنشاء سيرة ذاتية",
            "pdf": "تعديل وتوقيع PDF",
            "imageToPdf": "تحويل صورة إلى PDF",
        },
        "errors": {
            "allFieldsRequired": "جميع الحقول مطلوبة",
            "passwordTooShort": "كلمة المرور يجب أن تكون 6 أحرف على الأقل",
            "emailInUse": "البريد الإلكتروني مستخدم بالفعل",
            "registerFailed": "فشل في إنشاء الحساب",
            "emailPasswordRequired": "البريد وكلمة المرور مطلوبان",
            "invalidCredentials": "بيانات تسجيل الدخول غير صحيحة",
            "loginFailed": "فشل تسجيل الدخول",
            "unauthorized": "غير مصرح",
            "invalidAmount": "قيمة غير صالحة",
            "insufficientCredits": "رصيد غير كافٍ",
            "deductFailed": "فشل في خصم الرصيد",
            "loginRequired": "يجب تسجيل الدخول أولاً",
            "invalidSession": "جلسة غير صالحة",
            "invalidPackage": "باقة غير صالحة",
            "checkoutFailed": "فشل في إنشاء جلسة الدفع",
            "paymentsUnavailable": "الدفع غير متاح حالياً",
            "invalidEmail": "صيغة البريد الإلكتروني غير صحيحة",
            "deviceRegistered": "هذا الجهاز مسجل بالفعل. يُسمح بحساب واحد فقط لكل جهاز.",
            "invalidFormat": "صيغة الملف غير مدعومة. استخدم JPG أو PNG أو PDF",
            "fileTooLarge": "الملف كبير جداً. الحد الأقصى 10 ميغابايت",
        },
    },
    "de": {
        "app": {
            "title": "FormBridge AI",
            "tagline": "Deutsche Formulare einfach ausfüllen",
            "description": "Formular hochladen, auf Arabisch antworten, ausgefülltes Formular erhalten.",
        },
        "features": {
            "form": "Formular ausfüllen",
            "explain": "Dokument erklären",
            "cv": "Lebenslauf erstellen",
            "pdf": "PDF bearbeiten und unterschreiben",
            "imageToPdf": "Bild zu PDF",
        },
        "errors": {
            "allFieldsRequired": "Alle Felder sind erforderlich",
            "passwordTooShort": "Das Passwort muss mindestens 6 Zeichen lang sein",
            "emailInUse": "Diese E-Mail-Adresse wird bereits verwendet",
            "registerFailed": "Konto konnte nicht erstellt werden",
            "emailPasswordRequired": "E-Mail und Passwort sind erforderlich",
            "invalidCredentials": "Ungültige Anmeldedaten",
            "loginFailed": "Anmeldung fehlgeschlagen",
            "unauthorized": "Nicht autorisiert",
            "invalidAmount": "Ungültiger Betrag",
            "insufficientCredits": "Nicht genügend Guthaben",
            "deductFailed": "Guthaben konnte nicht abgebucht werden",
            "loginRequired": "Bitte zuerst anmelden",
            "invalidSession": "Ungültige Sitzung",
            "invalidPackage": "Ungültiges Paket",
            "checkoutFailed": "Zahlungssitzung konnte nicht erstellt werden",
            "paymentsUnavailable": "Zahlungen sind derzeit nicht verfügbar",
            "invalidEmail": "Ungültiges E-Mail-Format",
            "deviceRegistered": "Dieses Gerät ist bereits registriert. Pro Gerät ist nur ein Konto erlaubt.",
            "invalidFormat": "Nicht unterstütztes Dateiformat. Bitte JPG, PNG oder PDF verwenden",
            "fileTooLarge": "Die Datei ist zu groß. Maximal 10 MB",
        },
    },
}


def t(locale: str, key: str) -> str:
    """Get a nested translation by dot-notation key, e.g. t("ar", "app.tagline")."""
    value: Any = MESSAGES.get(locale, MESSAGES[DEFAULT_LOCALE])
    for part in key.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            logger.warning("Translation missing: %s for locale %s", key, locale)
            return key
    return value if isinstance(value, str) else key


def normalize_locale(lang: Optional[str]) -> str:
    """Normalize language code (e.g., 'de-DE' -> 'de')."""
    if not lang:
        return DEFAULT_LOCALE
    base_lang = lang.lower().strip().split("-")[0].split("_")[0]
    return base_lang if base_lang in SUPPORTED_LOCALES else DEFAULT_LOCALE


def detect_locale(request: Request) -> str:
    """Locale from cookie, then Accept-Language, then the default."""
    lang_cookie = request.cookies.get(LOCALE_COOKIE)
    if lang_cookie:
        return normalize_locale(lang_cookie)

    accept_lang = request.headers.get("accept-language", "")
    for part in accept_lang.split(","):
        lang_part = part.split(";")[0].strip().lower()
        base = lang_part.split("-")[0]
        if base in SUPPORTED_LOCALES:
            return base

    return DEFAULT_LOCALE


def text_direction(locale: str) -> str:
    return "rtl" if locale == "ar" else "ltr"
