import re

CODE_PREFIX = "AMAZON-GIFT-CODE"
CODE_PATTERN = re.compile(rf"{CODE_PREFIX}-[A-Z0-9]{{6}}")


def is_valid_format(code) -> bool:
    if not code or not isinstance(code, str):
        return False
    return CODE_PATTERN.fullmatch(code) is not None
