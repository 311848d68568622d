import re

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
# Bắt đầu và kết thúc bằng chữ số để không ăn mất khoảng trắng xung quanh
PHONE_PATTERN = re.compile(r"\+?\(?\d[\d\s\-()]{8,}\d")
TITLED_NAME_PATTERN = re.compile(r"\b(?:mr|mrs|ms|dr|sr|sra|srta)\.?\s+[a-záéíóúñü]+", re.IGNORECASE)


def anonymize_text(text: str) -> str:
    """Mask e-mail addresses, phone numbers and titled names before text leaves the store."""
    if not text or not isinstance(text, str):
        return text

    anonymized = EMAIL_PATTERN.sub("[EMAIL]", text)
    anonymized = PHONE_PATTERN.sub("[PHONE]", anonymized)
    anonymized = TITLED_NAME_PATTERN.sub("[NAME]", anonymized)
    return anonymized
