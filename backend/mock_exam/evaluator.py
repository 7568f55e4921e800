def _normalize(text: str) -> str:
    return text.strip().lower()


def evaluate_answer(submitted: str, canonical: str) -> bool:
    """Check a submitted answer against the canonical one.

    Case-insensitive after trimming surrounding whitespace. The same rule is
    used for every question type, fill-in-the-blank included.
    """
    return _normalize(submitted) == _normalize(canonical)
