import datetime
import decimal
import uuid


def to_json_compatible(value):
    """Convert nested dict/list payloads into values accepted by JSONField.

    Decimals become strings so monetary amounts keep their exact cents.
    """
    if isinstance(value, dict):
        return {str(key): to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def format_money(amount, prefix=""):
    return f"{prefix}{decimal.Decimal(amount):,.2f}"
