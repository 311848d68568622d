from utils.anonymizer import anonymize_text


def test_masks_email():
    assert anonymize_text("Write to ana.perez@example.com please") == "Write to [EMAIL] please"


def test_masks_phone_numbers():
    assert anonymize_text("Call me on +34 600-123-456 tomorrow") == "Call me on [PHONE] tomorrow"
    assert anonymize_text("Tel (305) 555-1234") == "Tel [PHONE]"


def test_masks_titled_names():
    assert anonymize_text("Dr. Smith will teach B2") == "[NAME] will teach B2"
    assert anonymize_text("Hablé con la Sra. Gómez") == "Hablé con la [NAME]"


def test_leaves_plain_text_and_short_numbers():
    text = "Class B1 starts at 9, room 12"
    assert anonymize_text(text) == text


def test_passes_through_empty_values():
    assert anonymize_text("") == ""
    assert anonymize_text(None) is None
